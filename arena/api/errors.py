"""Translate service errors into HTTP errors."""

from fastapi import HTTPException

from arena.services.exceptions import (
    ArenaError,
    ContestNotFoundError,
    EntryNotFoundError,
    UserNotFoundError,
)

NOT_FOUND_ERRORS = (ContestNotFoundError, EntryNotFoundError, UserNotFoundError)


def http_error(exc: ArenaError) -> HTTPException:
    """Map an ArenaError to a 404 or 400 carrying its message verbatim."""
    status_code = 404 if isinstance(exc, NOT_FOUND_ERRORS) else 400
    return HTTPException(status_code=status_code, detail=str(exc))
