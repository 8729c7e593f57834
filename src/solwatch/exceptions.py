"""Custom exceptions for solwatch.

Failure taxonomy:
- AdapterFailure / TransportFailure: one candidate failed, the fallback
  combinator records it and moves on to the next candidate.
- AllSourcesFailedError: every candidate in a chain failed; the only
  fallback error that reaches callers.
- ValidationFailure: malformed request, rejected before any upstream call.
"""


class SolwatchError(Exception):
    """Base exception for all solwatch errors."""


class AdapterFailure(SolwatchError):
    """Raised when a single price source cannot produce a record.

    ``no_data`` is True when the upstream answered but simply has nothing
    for the instrument (unknown id, no trading pairs).
    """

    def __init__(self, source: str, reason: str, no_data: bool = False) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason
        self.no_data = no_data


class TransportFailure(SolwatchError):
    """Raised when an upstream endpoint is unreachable or answers garbage."""

    def __init__(self, endpoint: str, reason: str) -> None:
        super().__init__(f"{endpoint}: {reason}")
        self.endpoint = endpoint
        self.reason = reason


class UpstreamHTTPError(TransportFailure):
    """Raised when an HTTP upstream answers with a non-2xx status."""

    def __init__(self, endpoint: str, status: int) -> None:
        super().__init__(endpoint, f"HTTP {status}")
        self.status = status


class AllSourcesFailedError(SolwatchError):
    """Raised when every candidate of an ordered fallback chain failed.

    ``failures`` keeps one entry per attempted candidate, in attempt order.
    """

    def __init__(self, chain: str, failures: list[SolwatchError]) -> None:
        self.chain = chain
        self.failures = failures
        summary = "; ".join(str(f) for f in failures) or "no candidates"
        super().__init__(f"All sources failed for {chain}: {summary}")

    @property
    def reasons(self) -> list[str]:
        """Per-candidate failure reasons in attempt order."""
        return [str(f) for f in self.failures]

    @property
    def only_missing_data(self) -> bool:
        """True when every candidate answered but had no data."""
        return bool(self.failures) and all(
            isinstance(f, AdapterFailure) and f.no_data for f in self.failures
        )


class ValidationFailure(SolwatchError):
    """Raised when a request is missing a required field or has a bad value."""
