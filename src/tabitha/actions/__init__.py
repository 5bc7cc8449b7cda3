"""Action Executor: browser mutations with preview, confirm and undo."""

from tabitha.actions.executor import ActionExecutor, ActionRequest
from tabitha.actions.inflight import InFlightGuard
from tabitha.actions.results import ActionResult
from tabitha.actions.undo import TabInfo, UndoEntry, UndoLog

__all__ = [
    "ActionExecutor",
    "ActionRequest",
    "ActionResult",
    "InFlightGuard",
    "TabInfo",
    "UndoEntry",
    "UndoLog",
]
