"""Error taxonomy for loading, planning and applying declaration documents."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime


class ConvergeError(Exception):
    """Base class for reconciler errors."""


class ParseError(ConvergeError):
    """Raised when a declaration document is malformed."""

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(f"{source}: {message}" if source else message)
        self.source = source


class ExpressionError(ParseError):
    """Raised when an expression cannot be parsed or evaluated."""


class ReferenceResolutionError(ConvergeError):
    """Raised when the dependency graph cannot be built."""


class UnresolvedReferenceError(ReferenceResolutionError):
    """Raised when a node references something that is not declared."""

    def __init__(self, missing: str, *, referrer: str | None = None) -> None:
        message = f"Reference to undeclared {missing}"
        if referrer is not None:
            message = f"{message} from {referrer}"
        super().__init__(message)
        self.missing = missing
        self.referrer = referrer


class DependencyCycleError(ReferenceResolutionError):
    """Raised when references and ordering hints form a cycle."""

    def __init__(self, nodes: Sequence[str]) -> None:
        super().__init__(f"Dependency cycle between: {' -> '.join(nodes)}")
        self.nodes = tuple(nodes)


class ProtectedResourceError(ConvergeError):
    """Raised when a plan would destroy a resource guarded by ``prevent_destroy``."""

    def __init__(self, address: str, *, action: str) -> None:
        super().__init__(f"{address} has prevent_destroy set and cannot be {action}")
        self.address = address


class UnknownProviderError(ConvergeError):
    """Raised when no provider is registered for a resource or data type."""


class ProviderError(ConvergeError):
    """Raised by providers when a CRUD call fails.

    ``retryable`` marks transient failures (rate limiting, network) that the
    executor retries with backoff before surfacing them as fatal.
    """

    def __init__(
        self, message: str, *, retryable: bool = False, address: str | None = None
    ) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.address = address

    def as_fatal(self) -> ProviderError:
        return ProviderError(str(self), retryable=False, address=self.address)


class LockConflictError(ConvergeError):
    """Raised when the state lock is held by another run."""

    def __init__(
        self,
        message: str,
        *,
        lock_id: str | None = None,
        holder: str | None = None,
        acquired_at: datetime | None = None,
        stale: bool = False,
    ) -> None:
        super().__init__(message)
        self.lock_id = lock_id
        self.holder = holder
        self.acquired_at = acquired_at
        self.stale = stale


class DriftError(ConvergeError):
    """Raised when live resources no longer match their State Records."""

    def __init__(self, addresses: Sequence[str]) -> None:
        listed = ", ".join(addresses)
        super().__init__(
            f"Drift detected for: {listed}. Refresh with drift mode 'adopt' to reconcile."
        )
        self.addresses = tuple(addresses)
