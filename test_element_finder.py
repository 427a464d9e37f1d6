"""
Tests for the select locator strategy chain.
"""

from backup_models import VariantKind
from utils.element_finder import SelectLocator, SelectTarget, by_position


def select(index, name="", id="", class_name="", options=("0", "1", "2"), attributes=None, label_texts=(), selector=None):
    if selector is None:
        selector = f"#{id}" if id else f'#content select[name="{name}"]'
    return {
        "index": index,
        "name": name,
        "id": id,
        "class_name": class_name,
        "value": options[0] if options else "",
        "options": list(options),
        "attributes": dict(attributes or {}),
        "label_texts": list(label_texts),
        "selector": selector,
    }


def test_exact_name_beats_everything_else():
    snapshot = [
        select(0, id="pidProfile"),
        select(1, name="profile"),
    ]
    match = SelectLocator.for_kind(VariantKind.PRIMARY).locate(snapshot)

    assert match.found
    assert match.method == "exact_name"
    assert match.selector == '#content select[name="profile"]'
    assert match.confidence == SelectLocator.CONFIDENCE_EXACT_NAME
    assert not match.guessed


def test_alternate_id_and_class():
    primary = SelectLocator.for_kind(VariantKind.PRIMARY)
    assert primary.locate([select(0, id="pid-profile")]).method == "alternate"

    secondary = SelectLocator.for_kind(VariantKind.SECONDARY)
    match = secondary.locate([select(0, class_name="form-control rate-profile", selector="#sel_2")])
    assert match.method == "alternate"
    assert match.selector == "#sel_2"


def test_data_setting_then_fuzzy_attribute():
    locator = SelectLocator.for_kind(VariantKind.SECONDARY)

    match = locator.locate([select(0, id="a", attributes={"data-setting": "rateProfileIndex"})])
    assert match.method == "data_setting"

    match = locator.locate([select(0, id="a", attributes={"aria-label": "Rate preset"})])
    assert match.method == "fuzzy_attribute"


def test_label_text_match():
    locator = SelectLocator.for_kind(VariantKind.SECONDARY)
    match = locator.locate([select(0, id="x1"), select(1, id="x2", label_texts=["Rate Profile"])])

    assert match.method == "label"
    assert match.selector == "#x2"


def test_positional_guess_is_flagged():
    snapshot = [
        select(0, id="big", options=[str(i) for i in range(20)]),
        select(1, id="a"),
        select(2, id="b", options=("0", "1")),
    ]

    primary = SelectLocator.for_kind(VariantKind.PRIMARY).locate(snapshot)
    secondary = SelectLocator.for_kind(VariantKind.SECONDARY).locate(snapshot, exclude=[primary.selector])

    assert (primary.selector, primary.guessed) == ("#a", True)
    assert (secondary.selector, secondary.guessed) == ("#b", True)
    assert primary.confidence == SelectLocator.CONFIDENCE_POSITION


def test_claimed_select_is_skipped_for_next_strategy():
    # Fuzzy keyword 'rate' would hit the select already claimed as primary
    snapshot = [
        select(0, name="profile", attributes={"title": "Profile (rate-aware)"}),
        select(1, id="sel_2", label_texts=["Rate Profile"]),
    ]
    locator = SelectLocator.for_kind(VariantKind.SECONDARY)

    match = locator.locate(snapshot, exclude=['#content select[name="profile"]'])

    assert match.selector == "#sel_2"
    assert match.method == "label"


def test_selects_without_selector_are_ignored():
    snapshot = [select(0, name="profile", selector="")]
    match = SelectLocator.for_kind(VariantKind.PRIMARY).locate(snapshot)

    assert not match.found
    assert match.option_count == 0


def test_nothing_found():
    match = SelectLocator.for_kind(VariantKind.PRIMARY).locate([select(0, id="x", options=("a",))])
    assert not match.found
    assert "profile" in match.message


def test_custom_strategy_chain():
    target = SelectTarget(name="mode", keyword="mode")
    locator = SelectLocator(target, strategies=[("position", 0.1, by_position(target))])

    match = locator.locate([select(0, id="only")])

    assert match.found
    assert match.method == "position"
    assert match.option_count == 3
