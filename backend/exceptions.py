"""
Error kinds raised by the engine.

Each error carries ``status_code`` and ``detail`` like FastAPI's
``HTTPException``, so a request layer can translate it without a lookup
table, plus a stable ``error_code`` and the offending identifiers.
"""

from typing import Iterable, Tuple


class EngineError(Exception):
    status_code = 500
    error_code = "ENGINE_ERROR"

    def __init__(self, detail: str, ids: Iterable[int] = ()):
        super().__init__(detail)
        self.detail = detail
        self.ids: Tuple[int, ...] = tuple(ids)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(detail={self.detail!r}, ids={self.ids!r})"


class NotFoundError(EngineError):
    """Referenced task, project, section or user does not exist (or is soft-deleted)."""

    status_code = 404
    error_code = "NOT_FOUND"


class BadRequestError(EngineError):
    """Structurally invalid input."""

    status_code = 400
    error_code = "BAD_REQUEST"


class ConflictError(EngineError):
    """The request would break an invariant (duplicate placement, dependency cycle)."""

    status_code = 409
    error_code = "CONFLICT"
