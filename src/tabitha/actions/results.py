"""Action result record."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ActionResult:
    """``{ok, error?, ...}``: action-specific fields live in ``details``."""

    ok: bool
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, **details: Any) -> ActionResult:
        return cls(ok=True, details=details)

    @classmethod
    def failure(cls, error: str, **details: Any) -> ActionResult:
        return cls(ok=False, error=str(error), details=details)

    @property
    def is_preview(self) -> bool:
        return bool(self.details.get("preview"))

    def get(self, key: str, default: Any = None) -> Any:
        return self.details.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok}
        if self.error:
            out["error"] = self.error
        out.update(self.details)
        return out
