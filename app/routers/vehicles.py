# app/routers/vehicles.py
"""Vehicle registry — list, lookup, verify, register, update, delete, export."""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from app.dependencies import get_lookup, get_policy, get_record_store, require_session
from app.schemas.session import UserSession
from app.schemas.vehicle import VehiclePayload, VehicleRecord, VehicleStats
from app.services.access_policy import AccessPolicy
from app.services.export_service import export_document, export_filename, vehicle_stats
from app.services.lookup import LookupEngine
from app.services.record_store import RecordStore

router = APIRouter()


def _require_list(session: UserSession, policy: AccessPolicy):
    if not policy.can_list(session.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Registry listing requires admin access")


def _require_write(session: UserSession, policy: AccessPolicy):
    if not policy.can_write(session.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Write access requires admin role")


@router.get("/vehicles", response_model=list[VehicleRecord], summary="List registered vehicles")
async def list_vehicles(
    vehicle_type: str = None,
    session: UserSession = Depends(require_session),
    policy: AccessPolicy = Depends(get_policy),
    store: RecordStore = Depends(get_record_store),
):
    _require_list(session, policy)
    records = policy.can_read(session.role, store.list())
    if vehicle_type:
        records = [r for r in records if r.type.value == vehicle_type]
    return records


@router.get("/vehicles/stats", response_model=VehicleStats, summary="Vehicle counts by type")
async def get_stats(
    session: UserSession = Depends(require_session),
    policy: AccessPolicy = Depends(get_policy),
    store: RecordStore = Depends(get_record_store),
):
    _require_list(session, policy)
    return vehicle_stats(policy.can_read(session.role, store.list()))


@router.get("/vehicles/export", summary="Download the registry as JSON")
async def export_vehicles(
    session: UserSession = Depends(require_session),
    policy: AccessPolicy = Depends(get_policy),
    store: RecordStore = Depends(get_record_store),
):
    _require_list(session, policy)
    return Response(
        content=export_document(policy.can_read(session.role, store.list())),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.get("/vehicles/lookup/{plate}", response_model=VehicleRecord, summary="Look up a plate number")
async def lookup_vehicle(
    plate: str,
    session: UserSession = Depends(require_session),
    lookup: LookupEngine = Depends(get_lookup),
):
    record = lookup.find(plate)
    if record is None:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return record


@router.get("/vehicles/verify", response_model=VehicleRecord, summary="Verify one vehicle by VIN or plate")
async def verify_vehicle(
    query: str,
    session: UserSession = Depends(require_session),
    lookup: LookupEngine = Depends(get_lookup),
):
    record = lookup.verify(query)
    if record is None:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return record


@router.post("/vehicles", response_model=VehicleRecord, status_code=201, summary="Register a new vehicle")
async def register_vehicle(
    body: VehiclePayload,
    session: UserSession = Depends(require_session),
    policy: AccessPolicy = Depends(get_policy),
    store: RecordStore = Depends(get_record_store),
):
    _require_write(session, policy)
    return store.create(body, session.role)


@router.put("/vehicles/{record_id}", response_model=VehicleRecord, summary="Update a vehicle record")
async def update_vehicle(
    record_id: str,
    body: VehiclePayload,
    session: UserSession = Depends(require_session),
    policy: AccessPolicy = Depends(get_policy),
    store: RecordStore = Depends(get_record_store),
):
    _require_write(session, policy)
    record = store.update(record_id, body, session.role)
    if record is None:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return record


@router.delete("/vehicles/{record_id}", summary="Remove a vehicle (requires confirm=true)")
async def remove_vehicle(
    record_id: str,
    confirm: bool = False,
    session: UserSession = Depends(require_session),
    policy: AccessPolicy = Depends(get_policy),
    store: RecordStore = Depends(get_record_store),
):
    _require_write(session, policy)
    if not confirm:
        raise HTTPException(status_code=400, detail="Deletion must be confirmed with confirm=true")
    if not store.delete(record_id, session.role, confirmed=True):
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return {"status": "removed", "id": record_id}
