"""
Shared test fixtures: an in-memory configurator page behind the
BrowserBridge surface, a controllable clock, and zero-delay timings.
"""

import asyncio
import io
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from PIL import Image

from backup_models import BackupTimings, RunState
from panel_capture import SUB_PANEL_SELECTORS
from status_channel import RunReporter, StatusChannel


def make_jpeg(width: int, height: int, color=(40, 40, 40)) -> bytes:
    output = io.BytesIO()
    Image.new("RGB", (width, height), color).save(output, format="JPEG", quality=90)
    return output.getvalue()


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps"""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds
        await asyncio.sleep(0)


@dataclass
class FakePage:
    """Content of one configurator tab"""
    scroll_height: int = 600
    client_height: int = 600
    sub_panels: List[str] = field(default_factory=list)
    sub_panel_selector: str = SUB_PANEL_SELECTORS[0]


@dataclass
class FakeSelect:
    options: List[str]
    value: str
    name: str = ""
    id: str = ""
    class_name: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    label_texts: List[str] = field(default_factory=list)

    @property
    def selector(self) -> str:
        if self.id:
            return f"#{self.id}"
        return f'#content select[name="{self.name}"]'


class FakeBridge:
    """In-memory stand-in for BrowserBridge"""

    def __init__(
        self,
        panels: Optional[List[Tuple[str, str]]] = None,
        pages: Optional[Dict[str, FakePage]] = None,
        selects: Optional[List[FakeSelect]] = None,
        terminal_outputs: Optional[Dict[str, str]] = None,
        viewport_width: int = 1000,
        device_scale: float = 1.0,
    ):
        self.panels = list(panels or [])
        self.pages = dict(pages or {})
        self.selects: Dict[str, FakeSelect] = {s.selector: s for s in (selects or [])}
        self.viewport_width = viewport_width
        self.device_scale = device_scale
        self.is_connected = True

        self.current_panel: Optional[str] = None
        self.scroll_top = 0
        self.expert_mode = False
        self.discover_empty_calls = 0
        self.discover_calls = 0

        # Connection: True / False, or None for "no indicator on the page"
        self.connected: Optional[bool] = True
        self.disconnect_after_clicks: Optional[int] = None

        # Capture
        self.clock: Optional[Callable[[], float]] = None
        self.capture_times: List[float] = []
        self.capture_calls = 0
        self.capture_failures = 0
        self.capture_always_fail = False

        # Recorded interactions
        self.panel_clicks: List[str] = []
        self.sub_panel_clicks: List[Tuple[Optional[str], int]] = []
        self.overlay_events: List[str] = []
        self.overlays_hidden = False
        self.select_history: List[Tuple[str, str]] = []
        self.ping_count = 0

        # Hooks and fault injection
        self.on_click_panel: Optional[Callable[[str], None]] = None
        self.on_click_sub_panel: Optional[Callable[[int], None]] = None
        self.on_set_select: Optional[Callable[[str, str], None]] = None
        self.set_fault: Optional[Callable[[str, str], Optional[str]]] = None  # -> 'raise' | 'reject' | None
        # Page script name -> call numbers (1-based) that raise like a torn-down page
        self.script_faults: Dict[str, List[int]] = {}
        self.script_calls: Dict[str, int] = {}

        # Terminal
        self.terminal_outputs = dict(terminal_outputs or {})
        self.terminal_chunks = 3
        self.send_methods = {"direct": True, "keyboard": True, "input": True}
        self.sent_commands: List[Tuple[str, str]] = []
        self.terminal_buffer = ""
        self.dom_only = False
        self._pending_output = ""
        self._revealed = 0

    # === Connection ===

    async def connect(self):
        self.is_connected = True

    async def close(self):
        self.is_connected = False

    async def ping(self) -> bool:
        self.ping_count += 1
        return True

    def page(self) -> FakePage:
        return self.pages.get(self.current_panel, FakePage())

    def _script(self, name: str):
        self.script_calls[name] = self.script_calls.get(name, 0) + 1
        if self.script_calls[name] in self.script_faults.get(name, []):
            raise RuntimeError(f"Execution context was destroyed during {name}")

    # === Capture and scrolling ===

    async def capture_viewport(self, timeout: float = 10.0) -> bytes:
        self.capture_calls += 1
        if self.clock is not None:
            self.capture_times.append(self.clock())
        if self.capture_always_fail:
            raise RuntimeError("capture failed")
        if self.capture_failures > 0:
            self.capture_failures -= 1
            raise TimeoutError("capture timed out")
        page = self.page()
        width = int(round(self.viewport_width * self.device_scale))
        height = int(round(page.client_height * self.device_scale))
        shade = (self.scroll_top // 4) % 200 + 20
        return make_jpeg(width, height, (shade, 80, 120))

    async def get_viewport_width(self) -> int:
        return self.viewport_width

    async def get_scroll_metrics(self) -> Dict[str, float]:
        self._script("get_scroll_metrics")
        page = self.page()
        return {"scroll_top": self.scroll_top, "scroll_height": page.scroll_height, "client_height": page.client_height}

    async def set_scroll_top(self, value: float) -> float:
        self._script("set_scroll_top")
        page = self.page()
        max_scroll = max(page.scroll_height - page.client_height, 0)
        self.scroll_top = int(min(max(value, 0), max_scroll))
        return self.scroll_top

    async def hide_bottom_overlays(self) -> int:
        self.overlay_events.append("hide")
        self.overlays_hidden = True
        return 2

    async def restore_bottom_overlays(self) -> int:
        self.overlay_events.append("restore")
        self.overlays_hidden = False
        return 2

    # === Elements ===

    def _sub_panels_for(self, selector: str) -> List[str]:
        page = self.page()
        if page.sub_panels and selector == page.sub_panel_selector:
            return page.sub_panels
        return []

    async def count_visible(self, selector: str) -> int:
        self._script("count_visible")
        return len(self._sub_panels_for(selector))

    async def visible_texts(self, selector: str) -> List[str]:
        return list(self._sub_panels_for(selector))

    async def click_nth_visible(self, selector: str, index: int) -> bool:
        if self.on_click_sub_panel is not None:
            self.on_click_sub_panel(index)
        if index >= len(self._sub_panels_for(selector)):
            return False
        self.sub_panel_clicks.append((self.current_panel, index))
        self.scroll_top = 0
        return True

    # === Navigation ===

    async def discover_panels(self) -> List[Dict[str, str]]:
        self.discover_calls += 1
        if self.discover_calls <= self.discover_empty_calls:
            return []
        return [{"cls": cls, "label": label} for cls, label in self.panels]

    async def click_panel(self, structural_class: str) -> bool:
        self._script("click_panel")
        if self.on_click_panel is not None:
            self.on_click_panel(structural_class)
        if structural_class not in [cls for cls, _ in self.panels]:
            return False
        self.panel_clicks.append(structural_class)
        self.current_panel = structural_class
        self.scroll_top = 0
        if self.disconnect_after_clicks is not None and len(self.panel_clicks) >= self.disconnect_after_clicks:
            self.connected = False
        return True

    async def enable_expert_mode(self) -> bool:
        if self.expert_mode:
            return False
        self.expert_mode = True
        return True

    async def get_connection_snapshot(self) -> Dict:
        if self.connected is None:
            return {"bem_button": None, "classic_button": None, "active_indicator": False,
                    "nav_items": 0, "nav_visible": False}
        return {"bem_button": self.connected, "classic_button": None, "active_indicator": False,
                "nav_items": len(self.panels), "nav_visible": bool(self.connected)}

    # === Selects ===

    async def get_select_snapshot(self) -> List[Dict]:
        return [
            {
                "index": i,
                "name": s.name,
                "id": s.id,
                "class_name": s.class_name,
                "value": s.value,
                "options": list(s.options),
                "attributes": dict(s.attributes),
                "label_texts": list(s.label_texts),
                "selector": s.selector,
            }
            for i, s in enumerate(self.selects.values())
        ]

    async def set_select_value(self, selector: str, value: str) -> Dict:
        self.select_history.append((selector, value))
        if self.on_set_select is not None:
            self.on_set_select(selector, value)
        select = self.selects.get(selector)
        if select is None:
            return {"ok": False}
        fault = self.set_fault(selector, value) if self.set_fault else None
        if fault == "raise":
            raise RuntimeError(f"Execution context was destroyed while setting {selector}")
        if fault == "reject" or value not in select.options:
            return {"ok": True, "actual": select.value}
        select.value = value
        return {"ok": True, "actual": value}

    async def get_select_value(self, selector: str) -> Optional[str]:
        select = self.selects.get(selector)
        return select.value if select else None

    # === Terminal ===

    def _start_output(self, command: str, method: str):
        self.sent_commands.append((command, method))
        self._pending_output = self.terminal_outputs.get(command, "")
        self._revealed = 0

    async def terminal_send_direct(self, command: str) -> bool:
        if not self.send_methods["direct"]:
            return False
        self._start_output(command, "direct")
        return True

    async def terminal_type(self, command: str, key_delay_ms: float = 5) -> bool:
        if not self.send_methods["keyboard"]:
            return False
        self._start_output(command, "keyboard")
        return True

    async def terminal_fill(self, command: str) -> bool:
        if not self.send_methods["input"]:
            return False
        self._start_output(command, "input")
        return True

    def _advance_output(self):
        if self._pending_output and self._revealed < len(self._pending_output):
            step = math.ceil(len(self._pending_output) / self.terminal_chunks)
            self._revealed = min(self._revealed + step, len(self._pending_output))
            self.terminal_buffer = self._pending_output[:self._revealed]

    async def terminal_read(self) -> str:
        self._advance_output()
        return "" if self.dom_only else self.terminal_buffer

    async def terminal_read_dom(self) -> str:
        return self.terminal_buffer

    async def terminal_clear(self) -> str:
        self.terminal_buffer = ""
        self._pending_output = ""
        self._revealed = 0
        return "button"

    async def terminal_diagnostics(self) -> Dict:
        return {"terminalFound": True}


@pytest.fixture
def timings():
    return BackupTimings.instant()


@pytest.fixture
def status():
    return StatusChannel()


@pytest.fixture
def run_state():
    state = RunState()
    state.begin()
    return state


@pytest.fixture
def reporter(status):
    return RunReporter(status)


@pytest.fixture
def assets():
    """Sink collecting emitted assets"""
    return []
