# app/services/record_store.py
"""
Record Store — in-memory vehicle collection mirrored to the key-value store.

Every successful create/update/delete rewrites the full snapshot under DATA_KEY.
On construction the snapshot is rehydrated; if none exists the default dataset is seeded.
The store is the only writer of id and lastUpdated.
"""

import random
import string
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from app.schemas.session import Role
from app.schemas.vehicle import VehiclePayload, VehicleRecord
from app.services.access_policy import AccessPolicy
from app.services.storage import JSONRepository
from app.utils.logger import get_logger

logger = get_logger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits
_ID_LENGTH = 9


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def default_vehicles(now: datetime) -> list[VehicleRecord]:
    return [
        VehicleRecord(
            id="1",
            plate="KAB123X",
            vin="VIN00123998",
            type="Car",
            model="Toyota Corolla",
            year="2020",
            color="White",
            owner="John Doe",
            history="Minor scratch repaired in 2022. Regular service maintained.",
            last_updated=isoformat(now - timedelta(days=2)),
        ),
        VehicleRecord(
            id="2",
            plate="ZDA990W",
            vin="VLV99822100",
            type="Truck",
            model="Volvo FH16",
            year="2021",
            color="Deep Blue",
            owner="Global Logistics Ltd",
            history="Heavy duty usage. Engine overhaul performed at 150k miles.",
            last_updated=isoformat(now - timedelta(hours=5)),
        ),
    ]


class RecordStore:
    def __init__(
        self,
        repository: JSONRepository,
        policy: AccessPolicy,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.policy = policy
        self.clock = clock
        self._records: list[VehicleRecord] = self._rehydrate()

    # ── Persistence ───────────────────────────────────────────────────────
    def _rehydrate(self) -> list[VehicleRecord]:
        snapshot = self.repository.load()
        if snapshot is not None and not isinstance(snapshot, list):
            logger.error(
                f"❌ Stored '{self.repository.key}' is a {type(snapshot).__name__}, not a list — reseeding"
            )
            snapshot = None

        if snapshot is None:
            records = default_vehicles(self.clock())
            self.repository.save([r.to_dict() for r in records])
            logger.info(f"Seeded registry with {len(records)} default vehicles")
            return records

        records = []
        for raw in snapshot:
            try:
                records.append(VehicleRecord.model_validate(raw))
            except ValidationError as e:
                # Dropped from memory, so the next write removes it from storage too
                logger.error(
                    f"❌ Discarding unreadable stored vehicle "
                    f"{raw.get('id') if isinstance(raw, dict) else raw!r}: {e}"
                )
        logger.info(f"Loaded {len(records)} vehicles from '{self.repository.key}'")
        return records

    def _persist(self):
        self.repository.save([r.to_dict() for r in self._records])

    def _new_id(self) -> str:
        existing = {r.id for r in self._records}
        while True:
            candidate = "".join(random.choices(_ID_ALPHABET, k=_ID_LENGTH))
            if candidate not in existing:
                return candidate

    def _denied(self, operation: str, role: Optional[Role]) -> bool:
        if self.policy.can_write(role):
            return False
        logger.warning(f"{operation} rejected — role {getattr(role, 'value', role)!r} lacks write access")
        return True

    # ── Reads ─────────────────────────────────────────────────────────────
    def list(self) -> list[VehicleRecord]:
        return list(self._records)

    def get(self, record_id: str) -> Optional[VehicleRecord]:
        return next((r for r in self._records if r.id == record_id), None)

    # ── Mutations ─────────────────────────────────────────────────────────
    def create(self, payload: VehiclePayload, role: Optional[Role]) -> Optional[VehicleRecord]:
        """Append a new record. Returns None (no change) if the role may not write."""
        if self._denied("create", role):
            return None
        record = VehicleRecord(
            **payload.model_dump(),
            id=self._new_id(),
            last_updated=isoformat(self.clock()),
        )
        self._records.append(record)
        self._persist()
        logger.info(f"Registered vehicle {record.plate} (id={record.id})")
        return record

    def update(self, record_id: str, payload: VehiclePayload, role: Optional[Role]) -> Optional[VehicleRecord]:
        """Replace the record in place. Returns None if denied or no record has this id."""
        if self._denied("update", role):
            return None
        for index, existing in enumerate(self._records):
            if existing.id == record_id:
                record = VehicleRecord(
                    **payload.model_dump(),
                    id=existing.id,
                    last_updated=isoformat(self.clock()),
                )
                self._records[index] = record
                self._persist()
                logger.info(f"Updated vehicle {record.plate} (id={record.id})")
                return record
        return None

    def delete(self, record_id: str, role: Optional[Role], confirmed: bool = False) -> bool:
        """Remove a record. Requires an explicit confirmation from the caller."""
        if self._denied("delete", role):
            return False
        if not confirmed:
            logger.info(f"Delete of {record_id} not confirmed — skipped")
            return False
        remaining = [r for r in self._records if r.id != record_id]
        if len(remaining) == len(self._records):
            return False
        self._records = remaining
        self._persist()
        logger.info(f"Deleted vehicle id={record_id}")
        return True
