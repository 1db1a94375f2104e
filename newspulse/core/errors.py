"""
Exception taxonomy for the ingestion core.

Provider exhaustion is deliberately absent: running out of quota is an
expected outcome and is reported as data (``None`` allocations and
skipped passes), not raised.
"""
from typing import Optional


class NewsPulseError(Exception):
    """Base class for all errors raised by this package."""
    pass


class SourceFetchError(NewsPulseError):
    """
    A provider call failed (network, HTTP status or unparseable payload).

    Raised by source adapters and caught by the orchestrator, which
    records it as a failed usage against the provider.
    """

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class PersistenceError(NewsPulseError):
    """The persistent store rejected a read or write."""
    pass


class CacheStoreError(NewsPulseError):
    """The cache store is unreachable or returned garbage."""
    pass


class IngestionError(NewsPulseError):
    """One or more categories failed to persist during a full refresh."""

    def __init__(self, failures: dict[str, Exception]):
        self.failures = failures
        names = ", ".join(sorted(failures))
        super().__init__(f"Ingestion failed for categories: {names}")
