"""Fallback orchestration across prioritized geocoding providers.

A resolution walks the provider chain in priority order
(``TRY_PRIMARY → TRY_SECONDARY → TRY_TERTIARY``), one attempt per provider
per pass, and ends ``RESOLVED`` or ``EXHAUSTED``. Any failure advances to the
next provider immediately. Whole passes are repeated, with backoff between
them, only while a pass saw a retryable failure (timeout, quota, transient).

Results outside the acceptable accuracy tiers are kept as candidates while
the chain continues. Once no further pass will run (the last pass is spent,
or a pass saw no retryable failure) the best candidate is returned flagged
``below_acceptable``.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from loguru import logger

from medsales_geo.lib.geocoder.base import (
    RETRYABLE_FAILURES,
    BaseGeocoder,
    FailureKind,
    GeocodeResult,
    GeocodingProviderError,
)
from medsales_geo.lib.geocoder.cache import GeocodeCache, cache_store
from medsales_geo.lib.geocoder.quality import apply_quality_flag, is_better
from medsales_geo.lib.geocoder.rate_limit import RateLimiter, RateLimitTimeout

if TYPE_CHECKING:
    from medsales_geo.core.config import GeocodingConfig
    from medsales_geo.lib.geocoder.address import NormalizedAddress


class ResolutionState(StrEnum):
    """State of a single address resolution."""

    TRY_PRIMARY = "try_primary"
    TRY_SECONDARY = "try_secondary"
    TRY_TERTIARY = "try_tertiary"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"


CHAIN_STATES: tuple[ResolutionState, ...] = (
    ResolutionState.TRY_PRIMARY,
    ResolutionState.TRY_SECONDARY,
    ResolutionState.TRY_TERTIARY,
)


class AttemptOutcome(StrEnum):
    """Outcome of one provider attempt."""

    RESOLVED = "resolved"
    LOW_CONFIDENCE = FailureKind.LOW_CONFIDENCE.value
    NO_MATCH = FailureKind.NO_MATCH.value
    QUOTA_EXCEEDED = FailureKind.QUOTA_EXCEEDED.value
    TRANSIENT_ERROR = FailureKind.TRANSIENT_ERROR.value
    TIMEOUT = FailureKind.TIMEOUT.value


_RETRYABLE_OUTCOMES = frozenset(AttemptOutcome(kind.value) for kind in RETRYABLE_FAILURES)


@dataclass(frozen=True)
class ProviderAttempt:
    """Record of one provider attempt within a resolution.

    ``called`` is False when the rate limiter timed out before the request.
    """

    provider: str
    pass_number: int
    outcome: AttemptOutcome
    error: str | None = None
    called: bool = True

    @property
    def retryable(self) -> bool:
        return self.outcome in _RETRYABLE_OUTCOMES

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "pass_number": self.pass_number,
            "outcome": self.outcome.value,
            "error": self.error,
            "called": self.called,
        }


@dataclass
class Resolution:
    """Final state of an address resolution and its attempt history."""

    state: ResolutionState
    result: GeocodeResult | None = None
    attempts: list[ProviderAttempt] = field(default_factory=list)
    passes: int = 0

    @property
    def providers_used(self) -> list[str]:
        """Providers in the order they were attempted."""
        return [a.provider for a in self.attempts]

    @property
    def last_error(self) -> str | None:
        for attempt in reversed(self.attempts):
            if attempt.outcome is not AttemptOutcome.RESOLVED:
                return attempt.error or attempt.outcome.value
        return None


class FallbackOrchestrator:
    """Drive one address through the provider chain.

    Args:
        providers: Adapters in priority order (one to three).
        limiter: Rate limiter holding a bucket for every provider.
        cache: Cache receiving successful resolutions (None disables writes).
        config: Configuration snapshot of the owning job.
        sleep: Coroutine used for backoff between passes.
    """

    def __init__(
        self,
        providers: Sequence[BaseGeocoder],
        limiter: RateLimiter,
        cache: GeocodeCache | None,
        config: GeocodingConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not providers:
            msg = "FallbackOrchestrator needs at least one provider"
            raise ValueError(msg)
        if len(providers) > len(CHAIN_STATES):
            msg = f"FallbackOrchestrator supports at most {len(CHAIN_STATES)} providers"
            raise ValueError(msg)
        self._providers = list(providers)
        self._limiter = limiter
        self._cache = cache
        self._config = config
        self._sleep = sleep

    @property
    def providers(self) -> list[BaseGeocoder]:
        return list(self._providers)

    def _max_passes(self, provider: str) -> int:
        try:
            return self._config.provider(provider).max_passes
        except KeyError:
            return self._config.retry_passes

    async def _attempt(
        self, provider: BaseGeocoder, canonical: str, pass_number: int
    ) -> tuple[ProviderAttempt, GeocodeResult | None]:
        name = provider.provider_name
        try:
            await self._limiter.acquire(name)
        except RateLimitTimeout as e:
            return ProviderAttempt(name, pass_number, AttemptOutcome.TIMEOUT, str(e), called=False), None

        try:
            result = await provider.geocode(canonical)
        except GeocodingProviderError as e:
            return ProviderAttempt(name, pass_number, AttemptOutcome(e.kind.value), e.message), None

        if result is None:
            return ProviderAttempt(name, pass_number, AttemptOutcome.NO_MATCH, "No match"), None

        if not result.provider:
            result = dataclasses.replace(result, provider=name)
        result = apply_quality_flag(result, self._config.acceptable_tiers)
        if result.below_acceptable:
            tier = result.accuracy.value if result.accuracy else "unknown"
            return ProviderAttempt(name, pass_number, AttemptOutcome.LOW_CONFIDENCE, f"Accuracy {tier}"), result
        return ProviderAttempt(name, pass_number, AttemptOutcome.RESOLVED), result

    async def _resolved(
        self, normalized: NormalizedAddress, result: GeocodeResult, attempts: list[ProviderAttempt], passes: int
    ) -> Resolution:
        await cache_store(self._cache, normalized.address_hash, result, self._config.cache_ttl)
        logger.debug(
            f"Resolved {normalized.address_hash[:12]} via {result.provider} "
            f"({result.accuracy}, pass {passes}, {len(attempts)} attempts)"
        )
        return Resolution(ResolutionState.RESOLVED, result, attempts, passes)

    async def resolve(
        self,
        normalized: NormalizedAddress,
        trail: list[ProviderAttempt] | None = None,
    ) -> Resolution:
        """Resolve a normalized address through the provider chain.

        Args:
            normalized: The address to geocode.
            trail: Optional list that receives attempts as they happen, so the
                history survives if the caller cancels the resolution.

        Returns:
            Resolution ending in RESOLVED or EXHAUSTED.
        """
        attempts = trail if trail is not None else []
        best: GeocodeResult | None = None
        passes = 0

        for pass_index in range(self._config.retry_passes):
            passes = pass_index + 1
            saw_retryable = False

            for position, provider in enumerate(self._providers):
                if pass_index >= self._max_passes(provider.provider_name):
                    continue

                state = CHAIN_STATES[position]
                logger.trace(f"{normalized.address_hash[:12]}: {state} ({provider.provider_name}, pass {passes})")
                attempt, result = await self._attempt(provider, normalized.canonical, passes)
                attempts.append(attempt)

                if attempt.outcome is AttemptOutcome.RESOLVED and result is not None:
                    return await self._resolved(normalized, result, attempts, passes)
                if result is not None and is_better(result, best):
                    best = result
                if attempt.retryable:
                    saw_retryable = True

            if not saw_retryable:
                break
            if pass_index < self._config.retry_passes - 1:
                delay = self._config.backoff_for_pass(pass_index)
                logger.debug(f"{normalized.address_hash[:12]}: pass {passes} incomplete, retrying in {delay}s")
                await self._sleep(delay)

        # Below-acceptable candidates settle only once no retry is left
        if best is not None:
            return await self._resolved(normalized, best, attempts, passes)

        logger.info(f"Exhausted providers for {normalized.address_hash[:12]} after {passes} pass(es)")
        return Resolution(ResolutionState.EXHAUSTED, None, attempts, passes)
