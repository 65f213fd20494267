"""Pydantic v2 schemas for batch geocoding jobs."""

import enum
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from medsales_geo.lib.geocoder.fallback import AttemptOutcome
from medsales_geo.lib.geocoder.quality import AccuracyTier


class JobStatus(enum.StrEnum):
    """Lifecycle of a batch geocoding job."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"


class JobPriority(enum.StrEnum):
    """Queue priority of a batch; affects ordering only."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[JobPriority, int] = {
    JobPriority.HIGH: 0,
    JobPriority.NORMAL: 1,
    JobPriority.LOW: 2,
}


class GeocodeResultResponse(BaseModel):
    """A resolved coordinate as reported in job output."""

    model_config = {"from_attributes": True}

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: AccuracyTier | None = None
    confidence_score: float | None = Field(default=None, ge=0, le=1)
    provider: str
    matched_address: str | None = None
    geocoded_at: datetime
    below_acceptable: bool = False


class ProviderAttemptResponse(BaseModel):
    """One provider attempt in an address's fallback history."""

    model_config = {"from_attributes": True}

    provider: str
    pass_number: int
    outcome: AttemptOutcome
    error: str | None = None
    called: bool = True


class AddressOutcomeResponse(BaseModel):
    """Per-address outcome inside a job."""

    address_id: str
    address_hash: str
    status: Literal["pending", "resolved", "failed"]
    cached: bool = False
    non_geocodable: bool = False
    result: GeocodeResultResponse | None = None
    attempts: list[ProviderAttemptResponse] = Field(default_factory=list)
    error: str | None = None


class JobCounts(BaseModel):
    """Progress counters of a job."""

    total: int
    completed: int
    cache_hits: int
    provider_calls: dict[str, int]
    failed: int


class JobStatusResponse(BaseModel):
    """Consistent point-in-time snapshot of a job."""

    job_id: str
    status: JobStatus
    priority: JobPriority
    source_tag: str | None = None
    counts: JobCounts
    unique_addresses: int
    estimated_remaining_seconds: float | None = None
    submitted_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    outcomes: list[AddressOutcomeResponse] = Field(default_factory=list)


class DeadLetterResponse(BaseModel):
    """A dead-lettered address awaiting manual review."""

    address_id: str
    address_hash: str
    job_id: str
    last_error: str
    attempts: list[ProviderAttemptResponse]
    queued_at: datetime


class BatchReport(BaseModel):
    """Final job snapshot together with the job's dead-lettered addresses."""

    job: JobStatusResponse
    dead_letters: list[DeadLetterResponse] = Field(default_factory=list)
