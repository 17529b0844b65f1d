# app/schemas/vehicle.py
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from app.config import settings


class VehicleType(str, Enum):
    CAR = "Car"
    TRUCK = "Truck"
    MOTORCYCLE = "Motorcycle"
    BUS = "Bus"


class VehiclePayload(BaseModel):
    """Caller-supplied vehicle fields. id and lastUpdated are store-owned and dropped here."""
    plate: str
    vin: str
    type: VehicleType
    model: str
    year: str
    color: str
    owner: str
    history: str = ""
    image: Optional[str] = None     # base64-encoded photo

    @field_validator("image")
    @classmethod
    def image_within_cap(cls, value):
        if value is not None and len(value) > settings.MAX_IMAGE_CHARS:
            raise ValueError(f"image exceeds {settings.MAX_IMAGE_CHARS} characters")
        return value

    class Config:
        extra = "ignore"
        coerce_numbers_to_str = True


class VehicleRecord(VehiclePayload):
    id: str
    last_updated: str = Field(alias="lastUpdated")

    class Config:
        extra = "ignore"
        coerce_numbers_to_str = True
        populate_by_name = True

    def to_dict(self) -> dict:
        """Persisted / wire form: camelCase keys, enum values as plain strings."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class VehicleStats(BaseModel):
    total: int
    by_type: dict[str, int]
