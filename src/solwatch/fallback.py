"""Ordered fallback combinator shared by every "try source 1, then 2, then 3" site.

Used by the price-source resolver (one candidate per upstream oracle) and
by the Solana RPC client (one candidate per endpoint URL). Candidates are
tried strictly in the given order; the first success short-circuits.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from solwatch.exceptions import (
    AdapterFailure,
    AllSourcesFailedError,
    SolwatchError,
    TransportFailure,
)
from solwatch.logging import get_logger

logger = get_logger(__name__)

C = TypeVar("C")
T = TypeVar("T")


@dataclass
class FallbackOutcome(Generic[T]):
    """Winning value plus the failures of every candidate tried before it."""

    value: T
    failures: list[SolwatchError] = field(default_factory=list)

    @property
    def reasons(self) -> list[str]:
        return [str(f) for f in self.failures]


async def first_success(
    chain: str,
    candidates: Sequence[C],
    attempt: Callable[[C], Awaitable[T]],
) -> FallbackOutcome[T]:
    """Run ``attempt`` on each candidate in order until one succeeds.

    ``attempt`` signals a recoverable failure by raising AdapterFailure or
    TransportFailure; anything else propagates unchanged.

    Args:
        chain: Label used in logs and in the exhaustion error.
        candidates: Ordered candidates, highest priority first.
        attempt: Async callable invoked with one candidate at a time.

    Returns:
        FallbackOutcome with the first successful value and prior failures.

    Raises:
        AllSourcesFailedError: every candidate failed (or there were none).
    """
    failures: list[SolwatchError] = []

    for position, candidate in enumerate(candidates):
        try:
            value = await attempt(candidate)
        except (AdapterFailure, TransportFailure) as exc:
            failures.append(exc)
            logger.info(
                "fallback_candidate_failed",
                chain=chain,
                position=position,
                reason=str(exc),
            )
            continue

        if failures:
            logger.debug(
                "fallback_recovered",
                chain=chain,
                position=position,
                failed_before=len(failures),
            )
        return FallbackOutcome(value=value, failures=failures)

    logger.warning("fallback_exhausted", chain=chain, attempts=len(failures))
    raise AllSourcesFailedError(chain, failures)
