"""
System State
============

Process-wide NORMAL / DEGRADED flag. In degraded mode the degraded guard
middleware rejects writes while reads keep working.
"""

import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class SystemStateName(str, Enum):
    NORMAL = "NORMAL"
    DEGRADED = "DEGRADED"


_lock = threading.Lock()
_state = SystemStateName.NORMAL
_reasons: List[Dict[str, Any]] = []


def reset_state() -> None:
    global _state, _reasons
    with _lock:
        _state = SystemStateName.NORMAL
        _reasons = []


def mark_degraded(reason: str, details: Optional[Any] = None) -> None:
    """Enter degraded mode; the same reason is recorded once."""
    global _state
    with _lock:
        _state = SystemStateName.DEGRADED
        if any(r["reason"] == reason for r in _reasons):
            return
        _reasons.append({
            "reason": reason,
            "details": details,
            "at": datetime.utcnow().isoformat(),
        })
    logger.warning(f"System marked DEGRADED: {reason}")


def set_state(next_state: SystemStateName) -> None:
    global _state, _reasons
    with _lock:
        _state = SystemStateName(next_state)
        if _state == SystemStateName.NORMAL:
            _reasons = []
    logger.info(f"System state set to {_state.value}")


def get_state() -> Dict[str, Any]:
    with _lock:
        return {"state": _state.value, "reasons": list(_reasons)}


def is_degraded() -> bool:
    return _state == SystemStateName.DEGRADED
