"""
Error taxonomy.

Every failure a script or a status query can hit is one of these. Errors
raised while a Group is open carry its id so the failure can be matched
against the action log afterwards.
"""

from __future__ import annotations


class WroughtError(Exception):
    """Base class for all wrought errors."""

    def __init__(self, message: str, *, group_id: int | None = None):
        super().__init__(message)
        self.message = message
        self.group_id = group_id

    def with_group(self, group_id: int) -> WroughtError:
        """Attach a group id if none is set yet. Returns self."""
        if self.group_id is None:
            self.group_id = group_id
        return self

    def __str__(self) -> str:
        if self.group_id is not None:
            return f"{self.message} (group {self.group_id})"
        return self.message


class ValidationError(WroughtError):
    """Malformed request, e.g. a path that escapes the project root."""


class NotFoundError(WroughtError):
    """Missing content, group, metadata or template."""


class ReentrancyError(WroughtError):
    """A blocking capability was entered while another wait was active."""


class StorageError(WroughtError):
    """Underlying persistence failed.

    May be raised after a side effect already landed; nothing is rolled back.
    """


class GuestRuntimeError(WroughtError):
    """The guest script trapped, raised, or returned a failure code."""


class ServiceError(WroughtError):
    """An external service behind a pass-through capability failed."""
