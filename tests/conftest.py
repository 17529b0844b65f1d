# tests/conftest.py
"""Shared fixtures: in-memory storage, fixed clock, store + lookup wiring."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import datetime, timezone
from app.schemas.vehicle import VehiclePayload
from app.services.access_policy import AccessPolicy
from app.services.lookup import LookupEngine
from app.services.record_store import RecordStore
from app.services.storage import JSONRepository, MemoryKeyValueStore

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
FIXED_STAMP = "2024-05-01T12:00:00.000Z"

CREDENTIALS = {
    "admin": {"password": "admin123", "role": "admin"},
    "clerk": {"password": "clerk123", "role": "viewer"},
}


def make_payload(**overrides) -> VehiclePayload:
    data = {
        "plate": "NEW001A",
        "vin": "X1",
        "type": "Car",
        "model": "Test",
        "year": "2024",
        "color": "Red",
        "owner": "Jane",
    }
    data.update(overrides)
    return VehiclePayload.model_validate(data)


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def data_repo(kv):
    return JSONRepository(kv, "autotrack_data")


@pytest.fixture
def store(data_repo):
    return RecordStore(data_repo, AccessPolicy("roles"), clock=lambda: FIXED_NOW)


@pytest.fixture
def lookup(store):
    return LookupEngine(store.list)
