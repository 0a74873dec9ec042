"""
TripWeaver orchestration core.

Turns free-form travel requests into cost-aware execution plans, runs them
across capability agents and generation backends, and learns from outcomes.
"""

from .bootstrap import StoreBundle, create_orchestration_core
from .config import Settings
from .orchestrator import OrchestrationCore
from .schemas import HealthSummary, InboundRequest, OrchestrationResponse

__version__ = "0.1.0"

__all__ = [
    "HealthSummary",
    "InboundRequest",
    "OrchestrationCore",
    "OrchestrationResponse",
    "Settings",
    "StoreBundle",
    "create_orchestration_core",
]
