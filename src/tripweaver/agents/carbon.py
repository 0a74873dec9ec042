"""
Environmental impact agent.

Estimates the round-trip emissions of flying to the destination (baseline)
against the recommended transport mode, and reports the difference as
``carbon_saved`` in kg CO2e. Distances are great-circle distances between
known cities; unknown routes use a typical regional distance.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from ..domain.capabilities import CARBON_ESTIMATION
from ..domain.entities import Step, StepContext, StepResult
from .base import BaseCapabilityAgent

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# Distance assumed when the origin or destination is unknown
DEFAULT_DISTANCE_KM = 1500.0

# kg CO2e per passenger-km
EMISSION_FACTORS = {
    "air": 0.255,
    "air_direct_economy": 0.195,
    "rail": 0.041,
    "coach": 0.027,
}

# Routes up to this distance are recommended by rail
RAIL_MAX_KM = 1200.0

CITY_COORDINATES: dict[str, tuple[float, float]] = {
    "amsterdam": (52.3676, 4.9041),
    "athens": (37.9838, 23.7275),
    "barcelona": (41.3874, 2.1686),
    "berlin": (52.5200, 13.4050),
    "brussels": (50.8503, 4.3517),
    "cairo": (30.0444, 31.2357),
    "copenhagen": (55.6761, 12.5683),
    "dubai": (25.2048, 55.2708),
    "istanbul": (41.0082, 28.9784),
    "lisbon": (38.7223, -9.1393),
    "london": (51.5072, -0.1276),
    "los angeles": (34.0522, -118.2437),
    "madrid": (40.4168, -3.7038),
    "marrakech": (31.6295, -7.9811),
    "milan": (45.4642, 9.1900),
    "munich": (48.1351, 11.5820),
    "new york": (40.7128, -74.0060),
    "paris": (48.8566, 2.3522),
    "porto": (41.1579, -8.6291),
    "prague": (50.0755, 14.4378),
    "rome": (41.9028, 12.4964),
    "san francisco": (37.7749, -122.4194),
    "sydney": (-33.8688, 151.2093),
    "tokyo": (35.6762, 139.6503),
    "vienna": (48.2082, 16.3738),
    "zurich": (47.3769, 8.5417),
}


def haversine_km(a: tuple[float, float], b: tuple[float, float]) -> float:
    """Great-circle distance between two (lat, lon) points in km."""
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def route_distance_km(origin: Optional[str], destination: Optional[str]) -> tuple[float, bool]:
    """Return ``(distance_km, estimated)`` for a route."""
    if origin and destination:
        a = CITY_COORDINATES.get(origin.strip().lower())
        b = CITY_COORDINATES.get(destination.strip().lower())
        if a and b:
            return haversine_km(a, b), False
    return DEFAULT_DISTANCE_KM, True


def recommend_mode(distance_km: float) -> str:
    if distance_km <= RAIL_MAX_KM:
        return "rail"
    return "air_direct_economy"


class EnvironmentalImpactAgent(BaseCapabilityAgent):
    """Compares flying with the recommended mode for the trip."""

    tags = frozenset({CARBON_ESTIMATION})

    async def handle(self, step: Step, context: StepContext) -> StepResult:
        session = context.request.session_attributes
        origin = context.slots.get("origin") or session.get("home_city")
        destination = context.slots.get("destination")
        travelers = max(1, int(context.slots.get("travelers", 1)))

        distance, estimated = route_distance_km(origin, destination)
        mode = recommend_mode(distance)

        # Round trip for every traveller
        passenger_km = distance * 2 * travelers
        baseline_kg = passenger_km * EMISSION_FACTORS["air"]
        recommended_kg = passenger_km * EMISSION_FACTORS[mode]
        saved = max(0.0, baseline_kg - recommended_kg)

        label = "train" if mode == "rail" else "a direct economy flight"
        text = (
            f"Choosing {label} instead of a standard flight saves about "
            f"{saved:.0f} kg CO2e for this trip."
        )
        return self._succeeded(
            step,
            {
                "text": text,
                "distance_km": round(distance, 1),
                "distance_estimated": estimated,
                "baseline_mode": "air",
                "recommended_mode": mode,
                "baseline_kg": round(baseline_kg, 2),
                "recommended_kg": round(recommended_kg, 2),
            },
            carbon_saved=round(saved, 2),
        )
