# app/services/export_service.py
"""Registry backup export and dashboard counts."""

import json
from collections import Counter
from datetime import date
from typing import Iterable, Optional

from app.schemas.vehicle import VehicleRecord, VehicleStats, VehicleType


def export_filename(today: Optional[date] = None) -> str:
    return f"autotrack_backup_{(today or date.today()).isoformat()}.json"


def export_document(records: Iterable[VehicleRecord]) -> str:
    return json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False)


def vehicle_stats(records: Iterable[VehicleRecord]) -> VehicleStats:
    counts = Counter(r.type.value for r in records)
    by_type = {t.value: counts.get(t.value, 0) for t in VehicleType}
    return VehicleStats(total=sum(by_type.values()), by_type=by_type)
