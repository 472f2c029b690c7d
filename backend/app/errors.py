from typing import Any, Dict, Optional


class ValidationError(Exception):
    """A request that cannot be applied to the bill in its current state."""

    status_code = 400

    def __init__(self, detail: str, *, line: Optional[int] = None, part_id: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        self.line = line
        self.part_id = part_id

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"detail": self.detail}
        if self.line is not None:
            out["line"] = self.line
        if self.part_id is not None:
            out["part_id"] = self.part_id
        return out


class NotFoundError(ValidationError):
    status_code = 404


class IdempotencyConflict(ValidationError):
    status_code = 409


class PersistenceError(Exception):
    """The database refused or lost the write; nothing was committed."""

    STATUS_BY_KIND = {"conflict": 409, "integrity": 409, "unavailable": 503}

    def __init__(self, detail: str, *, kind: str = "integrity"):
        super().__init__(detail)
        self.detail = detail
        self.kind = kind

    @property
    def status_code(self) -> int:
        return self.STATUS_BY_KIND.get(self.kind, 500)
