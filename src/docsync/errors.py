"""Error taxonomy for the sync engine.

Errors fall into three groups:

* **Fatal** -- ``AuthenticationError`` aborts the whole pass and is never
  retried here.  ``ConfigValidationError`` aborts before planning starts.
* **Transient** -- ``NetworkError`` and its subclasses
  (``RequestTimeoutError``, ``RateLimitError``, ``ServiceUnavailableError``)
  are retried with backoff and then surfaced per document.
* **Per-document outcomes** -- ``ConflictUnresolved``,
  ``DocumentNotFoundError`` and ``MoveCollisionError`` are isolated to the
  document being processed.

``PlanUnsafe`` is an aggregate condition: it blocks bulk execution of a
plan before any write happens.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .sync.models import SyncPlan


class SyncError(Exception):
    """Base class for every error raised by docsync."""

    def __init__(
        self, message: str, *, context: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class AuthenticationError(SyncError):
    """Credentials are invalid or expired."""


class NetworkError(SyncError):
    """A remote call failed for a transport-level reason.

    Args:
        message: Human-readable description.
        status_code: HTTP status code, when the transport exposes one.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.status_code = status_code


class RequestTimeoutError(NetworkError):
    """A single remote call exceeded its own timeout."""

    def __init__(self, timeout: float, **kwargs: Any) -> None:
        super().__init__(f"Request timed out after {timeout}s", **kwargs)
        self.timeout = timeout


class RateLimitError(NetworkError):
    """The service asked us to slow down.

    ``retry_after`` is the server-provided minimum wait in seconds, or
    ``None`` when the response carried no hint.
    """

    def __init__(
        self, retry_after: float | None = None, **kwargs: Any
    ) -> None:
        message = "Rate limit exceeded"
        if retry_after is not None:
            message += f", retry after {retry_after}s"
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ServiceUnavailableError(NetworkError):
    """The service answered with a 5xx-class failure."""


class ConfigValidationError(SyncError):
    """Configuration is invalid; raised before any pass starts."""


class DocumentNotFoundError(SyncError):
    """The remote service has no document with the given identifier."""

    def __init__(self, identifier: str) -> None:
        super().__init__(
            f"Document not found: {identifier}",
            context={"identifier": identifier},
        )
        self.identifier = identifier


class MoveCollisionError(SyncError):
    """A move target already exists; the move was aborted."""

    def __init__(self, source: str, target: str) -> None:
        super().__init__(
            f"Destination already exists at {target} (moving {source})",
            context={"source": source, "target": target},
        )
        self.source = source
        self.target = target


class ConflictUnresolved(SyncError):
    """Both sides changed and the configured policy could not merge them."""

    def __init__(
        self, path: str, identifier: str | None, reason: str
    ) -> None:
        super().__init__(
            f"Unresolved conflict for {path}: {reason}",
            context={"path": path, "identifier": identifier},
        )
        self.path = path
        self.identifier = identifier
        self.reason = reason


class PlanUnsafe(SyncError):
    """The sync plan contains real ambiguity; nothing may be written."""

    def __init__(self, plan: SyncPlan) -> None:
        duplicates = len(plan.blocking_warnings)
        conflicts = len(plan.conflicts)
        super().__init__(
            f"Sync aborted: {duplicates} duplicate document conflict(s), "
            f"{conflicts} unresolved sync conflict(s)"
        )
        self.plan = plan


_TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_transient(exc: BaseException) -> bool:
    """Return ``True`` if *exc* is worth retrying with backoff."""
    if isinstance(exc, AuthenticationError):
        return False
    if isinstance(
        exc, (RequestTimeoutError, RateLimitError, ServiceUnavailableError)
    ):
        return True
    if isinstance(exc, NetworkError):
        if exc.status_code is None:
            return True
        return exc.status_code in _TRANSIENT_STATUS_CODES
    return isinstance(exc, (ConnectionError, TimeoutError))
