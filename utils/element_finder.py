"""
Select Locator - Robust <select> lookup on the configurator's panels

The configurator renames and restyles its profile dropdowns between
releases, so a single selector is not enough. Locating runs an ordered
chain of strategies over a fresh snapshot of the panel's <select> elements
(plain dicts from ``page_scripts.SELECT_SNAPSHOT``). Each strategy is a
pure function from that snapshot to an optional match; the first match
wins.

Strategy order:
1. Exact name
2. Known alternate names / ids / classes
3. data-setting attribute containing the keyword
4. Any attribute containing the keyword
5. Associated label text
6. Positional guess among same-shaped selects (flagged as guessed)

Matches carry a CSS selector rather than an element: the caller resolves it
against the live DOM immediately before every use.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from backup_models import VariantKind

logger = logging.getLogger(__name__)

SelectSnapshot = List[Dict[str, Any]]
LocatorStrategy = Callable[[SelectSnapshot], Optional[Dict[str, Any]]]


@dataclass
class ElementMatch:
    """Result of a select lookup"""
    found: bool
    element: Optional[Dict[str, Any]] = None
    selector: Optional[str] = None
    confidence: float = 0.0
    method: str = ""
    message: str = ""
    guessed: bool = False

    @property
    def option_count(self) -> int:
        if not self.element:
            return 0
        return len(self.element.get("options") or [])


@dataclass(frozen=True)
class SelectTarget:
    """What to look for: the structural name plus a fuzzy keyword"""
    name: str
    keyword: str
    alternate_names: Tuple[str, ...] = ()
    alternate_ids: Tuple[str, ...] = ()
    alternate_classes: Tuple[str, ...] = ()
    guess_position: int = 0


SELECT_TARGETS: Dict[VariantKind, SelectTarget] = {
    VariantKind.PRIMARY: SelectTarget(
        name="profile",
        keyword="pid",
        alternate_names=("profile", "pid_profile", "pidProfile"),
        alternate_ids=("pid_profile", "pidProfile", "pid-profile"),
        alternate_classes=("pid_profile", "pid-profile", "pidprofile"),
        guess_position=0,
    ),
    VariantKind.SECONDARY: SelectTarget(
        name="rate_profile",
        keyword="rate",
        alternate_names=("rate_profile", "rateProfile"),
        alternate_ids=("rate_profile", "rateProfile", "rate-profile"),
        alternate_classes=("rate_profile", "rate-profile", "rateprofile"),
        guess_position=1,
    ),
}

# Profile dropdowns have a handful of entries; anything else is not a candidate for guessing
GUESS_MIN_OPTIONS = 2
GUESS_MAX_OPTIONS = 6


def _classes(select: Dict[str, Any]) -> List[str]:
    return (select.get("class_name") or "").split()


def by_exact_name(target: SelectTarget) -> LocatorStrategy:
    def strategy(selects: SelectSnapshot) -> Optional[Dict[str, Any]]:
        for select in selects:
            if select.get("name") == target.name:
                return select
        return None
    return strategy


def by_alternate_identifiers(target: SelectTarget) -> LocatorStrategy:
    def strategy(selects: SelectSnapshot) -> Optional[Dict[str, Any]]:
        for select in selects:
            if select.get("name") in target.alternate_names:
                return select
            if select.get("id") in target.alternate_ids:
                return select
            if any(c in target.alternate_classes for c in _classes(select)):
                return select
        return None
    return strategy


def by_data_setting(target: SelectTarget) -> LocatorStrategy:
    def strategy(selects: SelectSnapshot) -> Optional[Dict[str, Any]]:
        for select in selects:
            setting = (select.get("attributes") or {}).get("data-setting", "")
            if target.keyword in setting.lower():
                return select
        return None
    return strategy


def by_fuzzy_attribute(target: SelectTarget) -> LocatorStrategy:
    def strategy(selects: SelectSnapshot) -> Optional[Dict[str, Any]]:
        for select in selects:
            values = [select.get("name") or "", select.get("id") or "", select.get("class_name") or ""]
            values.extend(str(v) for v in (select.get("attributes") or {}).values())
            if any(target.keyword in v.lower() for v in values):
                return select
        return None
    return strategy


def by_label_text(target: SelectTarget) -> LocatorStrategy:
    needles = {target.keyword, target.name.replace("_", " ")}

    def strategy(selects: SelectSnapshot) -> Optional[Dict[str, Any]]:
        for select in selects:
            for text in select.get("label_texts") or []:
                if any(n in text.lower() for n in needles):
                    return select
        return None
    return strategy


def by_position(target: SelectTarget) -> LocatorStrategy:
    def strategy(selects: SelectSnapshot) -> Optional[Dict[str, Any]]:
        candidates = [
            s for s in selects
            if GUESS_MIN_OPTIONS <= len(s.get("options") or []) <= GUESS_MAX_OPTIONS
        ]
        if len(candidates) > target.guess_position:
            return candidates[target.guess_position]
        return None
    return strategy


class SelectLocator:
    """
    Ordered strategy chain for one select target.

    Strategies are tried in order; selects without a resolvable selector
    are dropped from the snapshot first since they could not be
    re-located later. A match on a select claimed by another target
    counts as a miss.
    """

    CONFIDENCE_EXACT_NAME = 1.0
    CONFIDENCE_ALTERNATE = 0.95
    CONFIDENCE_DATA_SETTING = 0.85
    CONFIDENCE_FUZZY = 0.7
    CONFIDENCE_LABEL = 0.6
    CONFIDENCE_POSITION = 0.2

    def __init__(self, target: SelectTarget, strategies: Optional[Sequence[Tuple[str, float, LocatorStrategy]]] = None):
        self.target = target
        self.strategies = list(strategies) if strategies is not None else self._default_strategies(target)

    @classmethod
    def for_kind(cls, kind: VariantKind) -> "SelectLocator":
        return cls(SELECT_TARGETS[kind])

    def _default_strategies(self, target: SelectTarget) -> List[Tuple[str, float, LocatorStrategy]]:
        return [
            ("exact_name", self.CONFIDENCE_EXACT_NAME, by_exact_name(target)),
            ("alternate", self.CONFIDENCE_ALTERNATE, by_alternate_identifiers(target)),
            ("data_setting", self.CONFIDENCE_DATA_SETTING, by_data_setting(target)),
            ("fuzzy_attribute", self.CONFIDENCE_FUZZY, by_fuzzy_attribute(target)),
            ("label", self.CONFIDENCE_LABEL, by_label_text(target)),
            ("position", self.CONFIDENCE_POSITION, by_position(target)),
        ]

    def locate(self, selects: SelectSnapshot, exclude: Sequence[str] = ()) -> ElementMatch:
        """
        Find the target select in a snapshot.

        Args:
            selects: Output of BrowserBridge.get_select_snapshot()
            exclude: Selectors already claimed by another target

        Returns:
            ElementMatch (found=False when every strategy missed)
        """
        usable = [s for s in selects if s.get("selector")]
        logger.debug(
            f"[SelectLocator] Looking for '{self.target.name}' among {len(usable)} selects: "
            f"{[(s.get('name'), s.get('id'), len(s.get('options') or [])) for s in usable]}"
        )

        for method, confidence, strategy in self.strategies:
            select = strategy(usable)
            if select is None or select["selector"] in exclude:
                continue
            guessed = method == "position"
            if guessed:
                logger.warning(
                    f"[SelectLocator] '{self.target.name}' only found by position "
                    f"(select #{select.get('index')}, {select.get('selector')})"
                )
            else:
                logger.info(f"[SelectLocator] '{self.target.name}' found by {method}: {select.get('selector')}")
            return ElementMatch(
                found=True,
                element=select,
                selector=select["selector"],
                confidence=confidence,
                method=method,
                message=f"Matched '{self.target.name}' by {method}",
                guessed=guessed,
            )

        return ElementMatch(found=False, message=f"No select found for '{self.target.name}'")
