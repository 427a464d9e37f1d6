"""
Log Stream - In-process log buffer with live WebSocket fan-out

Installed on the root logger by server.py. Every record is turned into a
small dict, kept in a bounded ring buffer for late joiners, and pushed to
each connected log viewer. The ``[Component]`` tag at the start of a
message is split out so the viewer can filter by component.
"""

import asyncio
import json
import logging
import re
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

COMPONENT_TAG = re.compile(r"^\s*\[([^\]]+)\]\s*")


def split_component(message: str):
    """'[CLI] Sent diff all' -> ('CLI', 'Sent diff all')"""
    match = COMPONENT_TAG.match(message)
    if not match:
        return "", message
    return match.group(1), message[match.end():]


class LogStreamHandler(logging.Handler):
    """Buffers formatted records and broadcasts them to WebSocket clients"""

    def __init__(self, capacity: int = 200):
        super().__init__()
        self.entries: Deque[Dict[str, Any]] = deque(maxlen=capacity)
        self.clients: Set[Any] = set()

    def to_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        component, text = split_component(record.getMessage())
        return {
            "timestamp": self.formatter.formatTime(record, "%H:%M:%S") if self.formatter else record.created,
            "level": record.levelname,
            "levelno": record.levelno,
            "component": component,
            "message": text,
            "logger": record.name,
        }

    def emit(self, record: logging.LogRecord):
        try:
            entry = self.to_entry(record)
            self.entries.append(entry)
            if not self.clients:
                return
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return  # Emitted from a thread without a loop; buffered only
            loop.create_task(self._broadcast(json.dumps({"type": "log", "data": entry})))
        except Exception:
            self.handleError(record)

    async def _broadcast(self, payload: str):
        gone = set()
        for client in list(self.clients):
            try:
                await client.send_text(payload)
            except Exception:
                gone.add(client)
        self.clients -= gone

    def add_client(self, websocket):
        self.clients.add(websocket)

    def remove_client(self, websocket):
        self.clients.discard(websocket)

    def recent(self, count: int = 100, min_level: Optional[str] = None, component: Optional[str] = None) -> List[Dict[str, Any]]:
        """Newest ``count`` entries, optionally filtered by level and component"""
        threshold = logging.getLevelName(min_level.upper()) if min_level else logging.NOTSET
        if not isinstance(threshold, int):
            threshold = logging.NOTSET
        selected = [
            e for e in self.entries
            if e["levelno"] >= threshold and (not component or e["component"] == component)
        ]
        return selected[-count:] if count > 0 else []
