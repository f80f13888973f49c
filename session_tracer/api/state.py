"""
API application state

Global state access for objects created at startup (config, trace store).
"""

from typing import Dict, Any

_global_state: Dict[str, Any] = {}


def get_app_state() -> Dict[str, Any]:
    return _global_state


def set_app_state(key: str, value: Any) -> None:
    _global_state[key] = value


def clear_app_state() -> None:
    _global_state.clear()


__all__ = ["get_app_state", "set_app_state", "clear_app_state"]
