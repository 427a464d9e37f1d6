"""
API route modules.

Routers pull their collaborators from a single dependency container that
server.py fills in at startup (tests fill it with fakes).
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class RouteDependencies:
    bridge: Any
    status: Any
    executor: Any
    preferences: Any
    archive_store: Any
    version: str = "1.0.0"


_deps: Optional[RouteDependencies] = None


def set_dependencies(deps: Optional[RouteDependencies]):
    global _deps
    _deps = deps


def get_deps() -> RouteDependencies:
    if _deps is None:
        raise RuntimeError("Route dependencies not initialized")
    return _deps
