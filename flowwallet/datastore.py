"""Shared datastore primitives: list paging options and lookup errors."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_LIMIT = 1000


@dataclass(frozen=True)
class ListOptions:
    """Paging options for list queries. A limit of -1 means no limit."""

    limit: int = DEFAULT_LIMIT
    offset: int = 0


class RecordNotFoundError(LookupError):
    """Raised by stores when a requested record does not exist."""

    def __init__(self, message: str = "record not found") -> None:
        super().__init__(message)


def parse_list_options(limit: int, offset: int) -> ListOptions:
    """Normalise raw limit/offset values into ListOptions.

    A zero limit becomes the default limit; a negative limit disables
    paging altogether; a negative offset is clamped to zero.
    """
    if limit == 0:
        limit = DEFAULT_LIMIT
    if limit < 0:
        limit = -1
        offset = 0
    if offset < 0:
        offset = 0
    return ListOptions(limit=limit, offset=offset)