# app/services/lookup.py
"""
Lookup Engine — exact, case-insensitive plate / VIN matching.
Used by the vehicles router and by the live assistant's searchVehicle tool.
"""

from typing import Callable, Iterable, Optional

from app.schemas.vehicle import VehicleRecord


def normalize(value: str) -> str:
    return (value or "").strip().upper()


class LookupEngine:
    def __init__(self, records: Callable[[], Iterable[VehicleRecord]]):
        # records is the store's list(); read fresh on every query
        self._records = records

    def _first(self, query: str, field: str) -> Optional[VehicleRecord]:
        wanted = normalize(query)
        if not wanted:
            return None
        for record in self._records():
            if normalize(getattr(record, field)) == wanted:
                return record
        return None

    def find(self, query: str) -> Optional[VehicleRecord]:
        """First record whose plate matches the query. None if not found."""
        return self._first(query, "plate")

    def find_by_vin(self, query: str) -> Optional[VehicleRecord]:
        return self._first(query, "vin")

    def verify(self, query: str) -> Optional[VehicleRecord]:
        """Viewer verification flow: VIN first, then plate. Discloses at most one record."""
        return self.find_by_vin(query) or self.find(query)
