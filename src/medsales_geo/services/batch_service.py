"""Batch geocoding coordinator: job intake, worker pool, progress and dead-letters.

A job is a batch of addresses. On submit the addresses are normalized and
deduplicated by hash; one work item per unique hash goes onto a shared
priority queue (HIGH before NORMAL before LOW, FIFO within a priority).
A fixed pool of worker tasks drains the queue. For each unique hash a worker:

1. dead-letters non-geocodable (PO box) addresses without provider calls,
2. dead-letters the address if the job deadline has passed,
3. serves a cache hit,
4. otherwise runs the fallback orchestrator bounded by
   ``min(address_max_wait, remaining job deadline)``.

Results fan out to every original address sharing the hash and are written
to the location store keyed by ``address_id``.

Each job also arms a loop timer for its deadline. When it fires, every
address still pending (queued or in flight) is dead-lettered, so a job stuck
behind higher-priority work still finishes on time.
"""

import asyncio
import itertools
import time
import uuid
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

from loguru import logger

from medsales_geo.core.config import ConfigurationError, GeocodingConfig
from medsales_geo.lib.geocoder.address import Address, NormalizedAddress, normalize
from medsales_geo.lib.geocoder.base import BaseGeocoder, GeocodeResult
from medsales_geo.lib.geocoder.cache import GeocodeCache, cache_lookup
from medsales_geo.lib.geocoder.fallback import FallbackOrchestrator, ProviderAttempt, Resolution, ResolutionState
from medsales_geo.lib.geocoder.rate_limit import RateLimiter
from medsales_geo.schemas.geocoding import (
    AddressOutcomeResponse,
    GeocodeResultResponse,
    JobCounts,
    JobPriority,
    JobStatus,
    JobStatusResponse,
    ProviderAttemptResponse,
)
from medsales_geo.services.dead_letter import DeadLetterQueue, DeadLetterRecord
from medsales_geo.services.location_store import LocationStore

OutcomeState = Literal["pending", "resolved", "failed"]


@dataclass
class _AddressGroup:
    """All addresses of one job sharing a normalized hash."""

    normalized: NormalizedAddress
    addresses: list[Address] = field(default_factory=list)
    state: OutcomeState = "pending"
    cached: bool = False
    result: GeocodeResult | None = None
    attempts: list[ProviderAttempt] = field(default_factory=list)
    error: str | None = None


@dataclass
class _Job:
    job_id: str
    priority: JobPriority
    source_tag: str | None
    config: GeocodingConfig
    orchestrator: FallbackOrchestrator
    groups: dict[str, _AddressGroup]
    total: int
    deadline: float
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    started_clock: float | None = None
    completed: int = 0
    cache_hits: int = 0
    failed: int = 0
    provider_calls: Counter = field(default_factory=Counter)
    in_flight: dict[str, asyncio.Task] = field(default_factory=dict)
    cancelled: bool = False
    deadline_timer: asyncio.TimerHandle | None = None
    done: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def finished(self) -> bool:
        return self.completed_at is not None

    @property
    def status(self) -> JobStatus:
        if self.finished:
            return JobStatus.PARTIALLY_FAILED if self.failed else JobStatus.COMPLETED
        if self.started_at is None:
            return JobStatus.QUEUED
        return JobStatus.IN_PROGRESS


class GeocodingCoordinator:
    """Runs batch geocoding jobs over a bounded pool of asyncio workers.

    Args:
        providers: Adapters keyed by provider name, or a sequence of adapters.
            Every provider named by the configuration must be present.
        cache: Shared geocode cache (None disables caching).
        config: Initial configuration snapshot.
        limiter: Shared rate limiter; built from ``config`` when omitted.
        store: Store of record for resolved coordinates (None skips persistence).
        dead_letters: Dead-letter set; a fresh one is created when omitted.
        clock: Monotonic clock used for job deadlines and estimates.

    Raises:
        ConfigurationError: If ``config`` is invalid or names a provider
            without an adapter.
    """

    def __init__(
        self,
        providers: Mapping[str, BaseGeocoder] | Sequence[BaseGeocoder],
        cache: GeocodeCache | None,
        config: GeocodingConfig,
        *,
        limiter: RateLimiter | None = None,
        store: LocationStore | None = None,
        dead_letters: DeadLetterQueue | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if isinstance(providers, Mapping):
            self._providers = dict(providers)
        else:
            self._providers = {p.provider_name: p for p in providers}
        self._cache = cache
        self._store = store
        self._clock = clock
        self.dead_letters = dead_letters if dead_letters is not None else DeadLetterQueue()

        self._check_config(config)
        self._config = config
        self._limiter = limiter if limiter is not None else RateLimiter.from_config(config)
        self._limiter.register_config(config)

        self._queue: asyncio.PriorityQueue[tuple[int, int, str, str]] = asyncio.PriorityQueue()
        self._sequence = itertools.count()
        self._jobs: dict[str, _Job] = {}
        self._workers: list[asyncio.Task] = []

    def _check_config(self, config: GeocodingConfig) -> None:
        config.validate()
        missing = [name for name in config.provider_names if name not in self._providers]
        if missing:
            msg = f"No adapter available for configured provider(s): {', '.join(missing)}"
            raise ConfigurationError(msg)

    @property
    def config(self) -> GeocodingConfig:
        return self._config

    @property
    def running(self) -> bool:
        return bool(self._workers)

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Spawn the worker pool. Calling it on a running coordinator is a no-op."""
        if self._workers:
            return
        count = self._config.worker_count
        self._workers = [asyncio.create_task(self._worker(i), name=f"geocode-worker-{i}") for i in range(count)]
        logger.info(f"Geocoding coordinator started with {count} workers")

    async def shutdown(self) -> None:
        """Cancel the worker pool and wait for it to stop."""
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if workers:
            logger.info("Geocoding coordinator stopped")

    async def __aenter__(self) -> "GeocodingCoordinator":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    def reconfigure(self, config: GeocodingConfig) -> None:
        """Swap the configuration used by future submissions.

        Jobs already submitted keep the snapshot they were created with.

        Raises:
            ConfigurationError: If ``config`` is invalid; the current
                configuration stays in place.
        """
        self._check_config(config)
        self._limiter.register_config(config)
        self._config = config
        logger.info(f"Geocoding configuration replaced: providers={config.provider_names}")

    # -- job intake --------------------------------------------------------

    async def submit(
        self,
        addresses: Iterable[Address],
        priority: JobPriority = JobPriority.NORMAL,
        source_tag: str | None = None,
    ) -> str:
        """Accept a batch and enqueue one work item per unique address hash.

        Args:
            addresses: Addresses to geocode.
            priority: Queue priority of the batch.
            source_tag: Free-form label of where the batch came from.

        Returns:
            The new job id.
        """
        config = self._config
        groups: dict[str, _AddressGroup] = {}
        total = 0
        for address in addresses:
            total += 1
            normalized = normalize(address)
            group = groups.get(normalized.address_hash)
            if group is None:
                group = groups[normalized.address_hash] = _AddressGroup(normalized=normalized)
            group.addresses.append(address)

        orchestrator = FallbackOrchestrator(
            [self._providers[name] for name in config.provider_names],
            self._limiter,
            self._cache,
            config,
        )
        job = _Job(
            job_id=str(uuid.uuid4()),
            priority=priority,
            source_tag=source_tag,
            config=config,
            orchestrator=orchestrator,
            groups=groups,
            total=total,
            deadline=self._clock() + config.job_deadline,
        )
        self._jobs[job.job_id] = job

        for key in groups:
            self._queue.put_nowait((priority.rank, next(self._sequence), job.job_id, key))

        logger.info(
            f"Geocoding job {job.job_id} queued: {total} addresses, {len(groups)} unique, "
            f"priority={priority}, source={source_tag}"
        )
        if not groups:
            self._finish(job)
        else:
            job.deadline_timer = asyncio.get_running_loop().call_later(
                config.job_deadline, self._deadline_expired, job.job_id
            )
        return job.job_id

    async def retry_failure(self, address_id: str) -> str:
        """Remove a dead-lettered address and resubmit it as a one-address job.

        Raises:
            KeyError: If ``address_id`` is not dead-lettered.
        """
        record = self.dead_letters.pop(address_id)
        logger.info(f"Retrying dead-lettered address {address_id} from job {record.job_id}")
        return await self.submit([record.address], source_tag=f"retry:{record.job_id}")

    def cancel(self, job_id: str) -> int:
        """Cancel a job, dead-lettering every address not yet resolved.

        In-flight resolutions are interrupted; attempts made so far are kept
        on the dead-letter records.

        Returns:
            Number of addresses dead-lettered by the cancellation.

        Raises:
            KeyError: If the job is unknown.
        """
        job = self._jobs[job_id]
        count = self._abort(job, "Job cancelled")
        if count:
            logger.warning(f"Geocoding job {job_id} cancelled, {count} addresses dead-lettered")
        return count

    def _deadline_expired(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is None or job.finished:
            return
        count = self._abort(job, "Job deadline exceeded")
        logger.warning(f"Geocoding job {job_id} passed its deadline, {count} addresses dead-lettered")

    def _abort(self, job: _Job, error: str) -> int:
        """Dead-letter every pending address of a job and interrupt its in-flight work."""
        if job.finished:
            return 0
        job.cancelled = True
        before = job.failed
        in_flight = list(job.in_flight.values())
        for group in job.groups.values():
            if group.state == "pending":
                self._record_failure(job, group, error)
        for task in in_flight:
            task.cancel()
        return job.failed - before

    # -- queries -----------------------------------------------------------

    def status(self, job_id: str) -> JobStatusResponse:
        """Return a point-in-time snapshot of a job.

        Raises:
            KeyError: If the job is unknown.
        """
        job = self._jobs[job_id]
        outcomes = [
            AddressOutcomeResponse(
                address_id=address.address_id,
                address_hash=key,
                status=group.state,
                cached=group.cached,
                non_geocodable=group.normalized.non_geocodable,
                result=GeocodeResultResponse.model_validate(group.result) if group.result else None,
                attempts=[ProviderAttemptResponse.model_validate(a) for a in group.attempts],
                error=group.error,
            )
            for key, group in job.groups.items()
            for address in group.addresses
        ]
        return JobStatusResponse(
            job_id=job.job_id,
            status=job.status,
            priority=job.priority,
            source_tag=job.source_tag,
            counts=JobCounts(
                total=job.total,
                completed=job.completed,
                cache_hits=job.cache_hits,
                provider_calls=dict(job.provider_calls),
                failed=job.failed,
            ),
            unique_addresses=len(job.groups),
            estimated_remaining_seconds=self._estimate_remaining(job),
            submitted_at=job.submitted_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            outcomes=outcomes,
        )

    async def wait(self, job_id: str, timeout: float | None = None) -> JobStatusResponse:
        """Wait until a job finishes and return its final snapshot.

        Raises:
            KeyError: If the job is unknown.
            TimeoutError: If the job is still running after ``timeout`` seconds.
        """
        job = self._jobs[job_id]
        async with asyncio.timeout(timeout):
            await job.done.wait()
        return self.status(job_id)

    def list_failures(self, job_id: str | None = None) -> list[DeadLetterRecord]:
        """List dead-lettered addresses, optionally for one job."""
        return self.dead_letters.list(job_id)

    def _estimate_remaining(self, job: _Job) -> float | None:
        if job.finished:
            return 0.0
        done = sum(1 for g in job.groups.values() if g.state != "pending")
        if job.started_clock is None or done == 0:
            return None
        per_hash = (self._clock() - job.started_clock) / done
        return round(per_hash * (len(job.groups) - done), 3)

    # -- workers -----------------------------------------------------------

    async def _worker(self, index: int) -> None:
        while True:
            _, _, job_id, key = await self._queue.get()
            try:
                job = self._jobs.get(job_id)
                if job is not None and not job.finished:
                    await self._process(job, key)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Worker {index} failed on job {job_id}")
                job = self._jobs.get(job_id)
                if job is not None:
                    group = job.groups[key]
                    if group.state == "pending":
                        self._record_failure(job, group, f"Internal error: {e}")
            finally:
                self._queue.task_done()

    async def _process(self, job: _Job, key: str) -> None:
        group = job.groups[key]
        if group.state != "pending":
            return
        if job.started_at is None:
            job.started_at = datetime.now(UTC)
            job.started_clock = self._clock()
            logger.debug(f"Geocoding job {job.job_id} started")

        if group.normalized.non_geocodable:
            self._record_failure(job, group, "Address is not geocodable (PO box)")
            return

        remaining = job.deadline - self._clock()
        if remaining <= 0:
            self._record_failure(job, group, "Job deadline exceeded")
            return

        cached = await cache_lookup(self._cache, key)
        if cached is not None:
            if group.state == "pending":
                self._record_success(job, group, cached, cached=True)
                await self._persist(group, cached)
            return

        limit = min(job.config.address_max_wait, remaining)
        task = asyncio.create_task(self._resolve_within(job.orchestrator, group, limit))
        job.in_flight[key] = task
        try:
            resolution = await task
        except TimeoutError:
            if group.state == "pending":
                self._record_failure(job, group, f"Resolution timed out after {limit:.1f}s")
            return
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            if group.state == "pending":
                self._record_failure(job, group, "Resolution cancelled")
            return
        finally:
            job.in_flight.pop(key, None)

        if group.state != "pending":
            return
        if resolution.state is ResolutionState.RESOLVED and resolution.result is not None:
            self._record_success(job, group, resolution.result)
            await self._persist(group, resolution.result)
        else:
            self._record_failure(job, group, resolution.last_error or "All providers exhausted")

    @staticmethod
    async def _resolve_within(orchestrator: FallbackOrchestrator, group: _AddressGroup, limit: float) -> Resolution:
        async with asyncio.timeout(limit):
            return await orchestrator.resolve(group.normalized, group.attempts)

    async def _persist(self, group: _AddressGroup, result: GeocodeResult) -> None:
        if self._store is None:
            return
        for address in group.addresses:
            try:
                await self._store.write(address.address_id, result)
            except Exception:
                logger.exception(f"Failed to store location for {address.address_id}")

    # -- outcome recording -------------------------------------------------

    def _count_calls(self, job: _Job, group: _AddressGroup) -> None:
        for attempt in group.attempts:
            if attempt.called:
                job.provider_calls[attempt.provider] += 1

    def _record_success(self, job: _Job, group: _AddressGroup, result: GeocodeResult, *, cached: bool = False) -> None:
        group.state = "resolved"
        group.result = result
        group.cached = cached
        if cached:
            job.cache_hits += 1
        self._count_calls(job, group)
        job.completed += len(group.addresses)
        self._maybe_finish(job)

    def _record_failure(self, job: _Job, group: _AddressGroup, error: str) -> None:
        group.state = "failed"
        group.error = error
        self._count_calls(job, group)
        attempts = tuple(group.attempts)
        for address in group.addresses:
            self.dead_letters.add(
                DeadLetterRecord(
                    address=address,
                    address_hash=group.normalized.address_hash,
                    job_id=job.job_id,
                    last_error=error,
                    attempts=attempts,
                )
            )
        job.completed += len(group.addresses)
        job.failed += len(group.addresses)
        logger.warning(
            f"Dead-lettered {len(group.addresses)} address(es) {group.normalized.address_hash[:12]} "
            f"in job {job.job_id}: {error}"
        )
        self._maybe_finish(job)

    def _maybe_finish(self, job: _Job) -> None:
        if job.completed >= job.total and not job.finished:
            self._finish(job)

    def _finish(self, job: _Job) -> None:
        job.completed_at = datetime.now(UTC)
        if job.deadline_timer is not None:
            job.deadline_timer.cancel()
            job.deadline_timer = None
        job.done.set()
        logger.info(
            f"Geocoding job {job.job_id} {job.status}: {job.completed} processed, {job.failed} failed, "
            f"{job.cache_hits} cache hits, provider calls {dict(job.provider_calls)}"
        )
