"""
JavaScript snippets evaluated inside the configurator page.

Each snippet is a single arrow function passed to ``page.evaluate``.
Snippets never return element handles: they return plain data (or run
an action and report the result) so callers always re-resolve elements
from the live DOM.
"""

# Locates the configurator's xterm instance. Inlined into every terminal
# snippet because evaluate() cannot share closures between calls.
FIND_TERMINAL = """
function findTerminal() {
    if (window.TABS && window.TABS.cli && window.TABS.cli.terminal) return window.TABS.cli.terminal;
    const sels = ['.xterm', '.terminal', '#terminal', '[class*="xterm"]'];
    for (const s of sels) {
        const el = document.querySelector(s);
        if (!el) continue;
        if (el._xterm) return el._xterm;
        if (el.xterm) return el.xterm;
        if (el.terminal) return el.terminal;
        for (const k of Object.getOwnPropertyNames(el)) {
            try { const v = el[k]; if (v && (v.paste || (v.buffer && v.buffer.active))) return v; } catch (e) {}
        }
    }
    for (const el of document.querySelectorAll('#content *')) {
        const keys = Object.getOwnPropertyNames(el);
        if (keys.length <= 50) continue;
        for (const k of keys) {
            try { const v = el[k]; if (v && v.paste && v.buffer) return v; } catch (e) {}
        }
    }
    return null;
}
"""

PING = "() => true"

VIEWPORT_WIDTH = "() => window.innerWidth"

# Scroll container: #content when it scrolls, otherwise the tallest
# overflow:auto/scroll block, otherwise the document.
_SCROLL_CONTAINER = """
function getScrollableContainer() {
    const content = document.querySelector('#content');
    if (content && content.scrollHeight > content.clientHeight + 10) return content;
    const candidates = Array.from(document.querySelectorAll('div, main, section'))
        .filter(el => {
            const s = getComputedStyle(el);
            return (s.overflowY === 'auto' || s.overflowY === 'scroll')
                && el.scrollHeight > el.clientHeight
                && el.clientHeight > 200;
        })
        .sort((a, b) => b.scrollHeight - a.scrollHeight);
    return candidates[0] || document.scrollingElement || document.documentElement;
}
"""

SCROLL_METRICS = "() => {" + _SCROLL_CONTAINER + """
    const el = getScrollableContainer();
    return { scroll_top: el.scrollTop, scroll_height: el.scrollHeight, client_height: el.clientHeight };
}"""

SET_SCROLL_TOP = "(value) => {" + _SCROLL_CONTAINER + """
    const el = getScrollableContainer();
    el.scrollTop = value;
    return el.scrollTop;
}"""

# Hides fixed/sticky bars near the bottom of the viewport and flex siblings
# sitting below the scroll container. Previous inline display is stored on
# the element itself so restore works without holding references.
HIDE_BOTTOM_OVERLAYS = "() => {" + _SCROLL_CONTAINER + """
    const ATTR = 'data-bf-backup-hidden';
    const viewH = window.innerHeight;
    let count = 0;
    const hide = (el) => {
        if (el.hasAttribute(ATTR)) return;
        el.setAttribute(ATTR, el.style.display || '');
        el.style.display = 'none';
        count++;
    };
    for (const el of document.querySelectorAll('*')) {
        const style = getComputedStyle(el);
        if (style.position !== 'fixed' && style.position !== 'sticky') continue;
        const rect = el.getBoundingClientRect();
        if (rect.top > viewH * 0.6 && rect.height > 5 && rect.height < viewH * 0.3) hide(el);
    }
    let current = getScrollableContainer();
    while (current && current !== document.body && current !== document.documentElement) {
        let sibling = current.nextElementSibling;
        while (sibling) {
            const rect = sibling.getBoundingClientRect();
            if (rect.height > 5 && rect.height < viewH * 0.3 && rect.top >= viewH * 0.6) hide(sibling);
            sibling = sibling.nextElementSibling;
        }
        current = current.parentElement;
    }
    return count;
}"""

RESTORE_BOTTOM_OVERLAYS = """() => {
    const ATTR = 'data-bf-backup-hidden';
    const hidden = document.querySelectorAll('[' + ATTR + ']');
    for (const el of hidden) {
        el.style.display = el.getAttribute(ATTR);
        el.removeAttribute(ATTR);
    }
    return hidden.length;
}"""

COUNT_VISIBLE = """(selector) => Array.from(document.querySelectorAll(selector))
    .filter(el => el.offsetWidth > 0 && el.offsetHeight > 0).length"""

VISIBLE_TEXTS = """(selector) => Array.from(document.querySelectorAll(selector))
    .filter(el => el.offsetWidth > 0 && el.offsetHeight > 0)
    .map(el => (el.innerText || '').trim())"""

CLICK_NTH_VISIBLE = """([selector, index]) => {
    const els = Array.from(document.querySelectorAll(selector))
        .filter(el => el.offsetWidth > 0 && el.offsetHeight > 0);
    if (els.length <= index) return false;
    els[index].click();
    return true;
}"""

DISCOVER_PANELS = """() => Array.from(document.querySelectorAll('ul.mode-connected > li > a.tabicon'))
    .filter(a => {
        const li = a.closest('li');
        return li && getComputedStyle(li).display !== 'none' && li.offsetHeight > 0;
    })
    .map(a => {
        const li = a.closest('li');
        const cls = li.className.split(' ').find(c => c.startsWith('tab_')) || '';
        return { cls: cls, label: (a.innerText || '').trim() };
    })"""

CLICK_PANEL = """(cls) => {
    const link = document.querySelector('li.' + cls + ' > a.tabicon');
    if (!link) return false;
    link.click();
    return true;
}"""

ENABLE_EXPERT_MODE = """() => {
    const cb = document.querySelector('input[name="expertModeCheckbox"]');
    if (!cb || cb.checked) return false;
    const label = cb.closest('label') || cb.parentElement;
    (label || cb).click();
    return true;
}"""

CONNECTION_SNAPSHOT = """() => {
    const snap = { bem_button: null, classic_button: null, active_indicator: false, nav_items: 0, nav_visible: false };
    const bem = document.querySelector('.connection_button__link');
    if (bem) snap.bem_button = bem.classList.contains('active');
    const classic = document.querySelector('.connect_b a, .connect_b button, .connect-button');
    if (classic) snap.classic_button = classic.classList.contains('active');
    snap.active_indicator = !!document.querySelector('[class*="connect"][class*="active"]');
    const nav = Array.from(document.querySelectorAll('ul.mode-connected > li'));
    snap.nav_items = nav.length;
    snap.nav_visible = nav.some(li => li.offsetHeight > 0);
    return snap;
}"""

# Plain-data description of every <select> in the content area, used by
# the select locator strategies.
SELECT_SNAPSHOT = """() => {
    const selectorFor = (select) => {
        if (select.id) return '#' + CSS.escape(select.id);
        if (select.name) return '#content select[name="' + select.name + '"]';
        const parent = select.parentElement;
        if (parent) {
            const siblings = Array.from(parent.querySelectorAll(':scope > select'));
            const idx = siblings.indexOf(select);
            if (idx >= 0) {
                const parentSel = parent.id ? '#' + CSS.escape(parent.id) : parent.tagName.toLowerCase();
                return parentSel + ' > select:nth-of-type(' + (idx + 1) + ')';
            }
        }
        return null;
    };
    const labelTexts = (select) => {
        const texts = [];
        if (select.id) {
            const forLabel = document.querySelector('label[for="' + select.id + '"]');
            if (forLabel) texts.push(forLabel.textContent || '');
        }
        const wrapping = select.closest('label');
        if (wrapping) texts.push(wrapping.textContent || '');
        const prev = select.previousElementSibling;
        if (prev) texts.push(prev.textContent || '');
        if (select.parentElement) texts.push(select.parentElement.textContent || '');
        return texts.map(t => t.trim().toLowerCase()).filter(t => t.length > 0 && t.length < 200);
    };
    return Array.from(document.querySelectorAll('#content select')).map((s, index) => ({
        index: index,
        name: s.name || '',
        id: s.id || '',
        class_name: s.className || '',
        value: s.value,
        options: Array.from(s.options).map(o => o.value),
        attributes: Object.fromEntries(Array.from(s.attributes).map(a => [a.name, a.value])),
        label_texts: labelTexts(s),
        selector: selectorFor(s),
    }));
}"""

# Runs in the page's own world so the change event reaches Vue's handlers.
SET_SELECT_VALUE = """([selector, value]) => {
    const select = document.querySelector(selector);
    if (!select) return { ok: false, why: 'not found', selector: selector };
    select.value = String(value);
    select.dispatchEvent(new Event('change', { bubbles: true }));
    select.dispatchEvent(new Event('input', { bubbles: true }));
    return { ok: true, actual: select.value };
}"""

GET_SELECT_VALUE = """(selector) => {
    const select = document.querySelector(selector);
    return select ? select.value : null;
}"""

TERMINAL_SEND = "(cmd) => {" + FIND_TERMINAL + """
    const term = findTerminal();
    if (!term) return { ok: false, why: 'not found' };
    if (typeof term.paste === 'function') { term.paste(cmd + '\\n'); return { ok: true, via: 'paste' }; }
    if (typeof term.input === 'function') { term.input(cmd + '\\r'); return { ok: true, via: 'input' }; }
    if (typeof term.write === 'function') { term.write(cmd + '\\r'); return { ok: true, via: 'write' }; }
    return { ok: false, why: 'no method', keys: Object.keys(term).slice(0, 20) };
}"""

TERMINAL_READ = "() => {" + FIND_TERMINAL + """
    const term = findTerminal();
    if (!term || !term.buffer || !term.buffer.active) return '';
    const buf = term.buffer.active;
    const lines = [];
    for (let i = 0; i < buf.length; i++) {
        const line = buf.getLine(i);
        if (line) lines.push(line.translateToString(true));
    }
    while (lines.length > 0 && lines[lines.length - 1].trim() === '') lines.pop();
    return lines.join('\\n');
}"""

TERMINAL_READ_DOM = """() => {
    const selectors = ['#content .window .wrapper', '#content .terminal-output', '#content pre',
                       '.tab_cli .window .wrapper', '.window .wrapper'];
    for (const sel of selectors) {
        const el = document.querySelector(sel);
        if (el && el.innerText.trim().length > 0) return el.innerText;
    }
    return '';
}"""

TERMINAL_CLEAR = "() => {" + FIND_TERMINAL + """
    const button = document.querySelector('#content a.clear, #content button.clear');
    if (button) { button.click(); return 'button'; }
    const term = findTerminal();
    if (term && term.clear) { term.clear(); return 'terminal'; }
    return '';
}"""

TERMINAL_DIAGNOSTICS = "() => {" + FIND_TERMINAL + """
    return {
        hasXterm: !!document.querySelector('.xterm'),
        hasTerminal: !!document.querySelector('.terminal'),
        hasXtermHelper: !!document.querySelector('.xterm-helper-textarea'),
        textareas: document.querySelectorAll('#content textarea').length,
        inputs: document.querySelectorAll('#content input[type="text"]').length,
        canvasCount: document.querySelectorAll('#content canvas').length,
        hasTABS: !!window.TABS,
        hasTabsCli: !!(window.TABS && window.TABS.cli),
        terminalFound: !!findTerminal(),
    };
}"""

# Keystroke replay target (xterm's hidden helper textarea).
TERMINAL_KEYBOARD_SELECTORS = (
    ".xterm-helper-textarea",
    "textarea[aria-label]",
    ".xterm textarea",
    ".terminal textarea",
)

# Plain text inputs for consoles not backed by a terminal emulator.
TERMINAL_INPUT_SELECTORS = (
    "#content input.cliInput",
    '#content input[placeholder*="command" i]',
    '#content input[placeholder*="cli" i]',
    '#content input[type="text"]',
    "#content textarea:not(.xterm-helper-textarea)",
)
