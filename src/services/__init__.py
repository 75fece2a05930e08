"""Services package.

Keep this module lightweight: importing `services` should not pull in the
server simulation or anti-cheat engine. Heavier services are exported lazily.
"""

from __future__ import annotations

import importlib

from .event_bus import EventBus, Events, event_bus
from .logger import get_logger, setup_logging

__all__ = ["EventBus", "Events", "event_bus", "get_logger", "setup_logging"]


_LAZY_EXPORTS = {
    # Key/value persistence
    "KeyValueStore": ("services.preferences", "KeyValueStore"),
    "InMemoryStore": ("services.preferences", "InMemoryStore"),
    "JsonFileStore": ("services.preferences", "JsonFileStore"),
    # Server contract and the in-process authoritative server
    "ServerError": ("services.server_service", "ServerError"),
    "ServerService": ("services.server_service", "ServerService"),
    "MockServerService": ("services.mock_server", "MockServerService"),
    # Client session lifecycle
    "SessionManager": ("services.session_manager", "SessionManager"),
}


def __getattr__(name: str):
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = importlib.import_module(module_name)
        value = getattr(module, attr)
        globals()[name] = value
        if name not in __all__:
            __all__.append(name)
        return value
    raise AttributeError(f"module 'services' has no attribute {name!r}")
