"""
Degraded fallback responder.

Produces a cheap, template-based answer when every generation provider for a
capability is unavailable. Responses are always flagged ``degraded`` and are
never cached.
"""

from __future__ import annotations

import logging
from typing import Any

from ..domain.entities import ProviderResponse

logger = logging.getLogger(__name__)

FALLBACK_PROVIDER_ID = "fallback"

_TEMPLATES = {
    "itinerary_generation": (
        "Here is a starting outline for {trip}: arrive and settle in on day one, "
        "spend the middle days on the main sights and neighbourhoods, and keep the "
        "last day light for travel. {budget_line}I'll add detailed suggestions as "
        "soon as my planning service is back."
    ),
    "booking_assistance": (
        "I can't reach the booking service right now. For {trip}, compare a few "
        "options on price and cancellation policy, and I'll pick this up again shortly."
    ),
    "local_guidance": (
        "I don't have live local information for {trip} at the moment. Checking "
        "official tourism sites and recent reviews is a good first step."
    ),
    "emergency_guidance": (
        "If you are in danger, contact local emergency services immediately. "
        "Keep copies of your documents and contact your embassy or your travel "
        "insurer for urgent help."
    ),
}

_DEFAULT_TEMPLATE = (
    "I'm having trouble reaching my planning services right now, but I'm "
    "still here to help{with_trip}. Could you try again in a moment?"
)


class FallbackResponder:
    """Template-based degraded responder.

    Example:
        responder = FallbackResponder(cost=0.0001)
        response = responder.respond("itinerary_generation", {"destination": "Lisbon"})
        response.degraded  # True
    """

    def __init__(self, cost: float = 0.0001):
        self.cost = cost
        self.responses = 0

    def respond(self, capability_tag: str, payload: dict[str, Any]) -> ProviderResponse:
        """Build a degraded response for ``capability_tag``."""
        slots = payload.get("slots") or {}
        destination = slots.get("destination")
        days = slots.get("duration_days")

        if destination and days:
            trip = f"your {days}-day trip to {destination}"
        elif destination:
            trip = f"your trip to {destination}"
        else:
            trip = "your trip"

        budget_line = ""
        if slots.get("budget"):
            budget_line = (
                f"Keep roughly a third of your {slots.get('currency', '')} "
                f"{slots['budget']:g} budget for accommodation. "
            ).replace("  ", " ")

        template = _TEMPLATES.get(capability_tag)
        if template is None:
            text = _DEFAULT_TEMPLATE.format(
                with_trip=f" with {trip}" if destination else ""
            )
        else:
            text = template.format(trip=trip, budget_line=budget_line)

        self.responses += 1
        logger.warning(f"Serving degraded fallback response for '{capability_tag}'")
        return ProviderResponse(
            provider_id=FALLBACK_PROVIDER_ID,
            text=text,
            cost=self.cost,
            degraded=True,
            attempts=0,
        )


__all__ = ["FallbackResponder", "FALLBACK_PROVIDER_ID"]
