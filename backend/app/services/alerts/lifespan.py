"""
Vehicle lifespan check against the metro age limits per fuel type.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from app.services.alerts.rules import (
    BUCKET_APPROACHING,
    BUCKET_EXCEEDED,
    KIND_LIFESPAN,
    AlertItem,
    VehicleFacts,
)

# Electric and anything not listed has no limit.
VEHICLE_LIFESPAN_LIMITS: dict[str, int] = {
    "DIESEL": 10,
    "PETROL": 15,
    "CNG": 15,
    "LPG": 15,
    "HYBRID": 15,
}

LIFESPAN_ALERT_TYPE = "lifespan"
APPROACHING_WINDOW_YEARS = 2


def max_lifespan_for(fuel_type: Optional[str]) -> Optional[int]:
    if not fuel_type:
        return None
    return VEHICLE_LIFESPAN_LIMITS.get(fuel_type.strip().upper())


def classify_lifespan(max_lifespan: int, vehicle_age: int) -> Optional[str]:
    years_remaining = max_lifespan - vehicle_age
    if years_remaining <= 0:
        return BUCKET_EXCEEDED
    if years_remaining <= APPROACHING_WINDOW_YEARS:
        return BUCKET_APPROACHING
    return None


def evaluate_lifespan(vehicle: VehicleFacts, today: date) -> Optional[AlertItem]:
    max_lifespan = max_lifespan_for(vehicle.fuel_type)
    if max_lifespan is None or vehicle.registration_date is None:
        return None

    # Calendar-year difference, not elapsed days.
    vehicle_age = today.year - vehicle.registration_date.year
    bucket = classify_lifespan(max_lifespan, vehicle_age)
    if bucket is None:
        return None

    return AlertItem(
        kind=KIND_LIFESPAN,
        vehicle=vehicle,
        alert_type=LIFESPAN_ALERT_TYPE,
        bucket=bucket,
        label=f"{max_lifespan}-year {vehicle.fuel_type.strip().lower()} age limit",
        vehicle_age=vehicle_age,
        max_lifespan=max_lifespan,
        years_remaining=max_lifespan - vehicle_age,
    )
