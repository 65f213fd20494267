"""Dead-letter set for addresses that exhausted every provider."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from medsales_geo.lib.geocoder.address import Address
from medsales_geo.lib.geocoder.fallback import ProviderAttempt
from medsales_geo.schemas.geocoding import DeadLetterResponse, ProviderAttemptResponse


@dataclass(frozen=True)
class DeadLetterRecord:
    """Terminal failure awaiting a human-triggered retry."""

    address: Address
    address_hash: str
    job_id: str
    last_error: str
    attempts: tuple[ProviderAttempt, ...] = ()
    queued_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_response(self) -> DeadLetterResponse:
        return DeadLetterResponse(
            address_id=self.address.address_id,
            address_hash=self.address_hash,
            job_id=self.job_id,
            last_error=self.last_error,
            attempts=[ProviderAttemptResponse.model_validate(a) for a in self.attempts],
            queued_at=self.queued_at,
        )


class DeadLetterQueue:
    """Dead-letter records keyed by address id.

    Holds at most one record per address id; a newer failure for the same
    address replaces the older record.
    """

    def __init__(self) -> None:
        self._records: dict[str, DeadLetterRecord] = {}

    def add(self, record: DeadLetterRecord) -> None:
        address_id = record.address.address_id
        if address_id in self._records:
            logger.debug(f"Replacing dead-letter record for address {address_id}")
        self._records[address_id] = record

    def list(self, job_id: str | None = None) -> list[DeadLetterRecord]:
        """Return records, optionally only those from one job, oldest first."""
        records = self._records.values()
        if job_id is not None:
            records = [r for r in records if r.job_id == job_id]
        return sorted(records, key=lambda r: r.queued_at)

    def get(self, address_id: str) -> DeadLetterRecord | None:
        return self._records.get(address_id)

    def pop(self, address_id: str) -> DeadLetterRecord:
        """Remove and return the record for ``address_id``.

        Raises:
            KeyError: If the address is not dead-lettered.
        """
        return self._records.pop(address_id)

    def __contains__(self, address_id: object) -> bool:
        return address_id in self._records

    def __len__(self) -> int:
        return len(self._records)
