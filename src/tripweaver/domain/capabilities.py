"""
Capability tags.

Agent capabilities are served by capability agents from the agent registry;
generation capabilities are served by providers through the provider manager.
"""

# ============================================
# Agent Capabilities
# ============================================

EMOTIONAL_ADAPTATION = "emotional_adaptation"
PREFERENCE_INFERENCE = "preference_inference"
CROSS_SESSION_MEMORY = "cross_session_memory"
MEMORY_CAPTURE = "memory_capture"
PEER_MATCHING = "peer_matching"
CARBON_ESTIMATION = "carbon_estimation"
CONTINGENCY_REPLANNING = "contingency_replanning"

# ============================================
# Generation Capabilities
# ============================================

GENERAL_GENERATION = "general_generation"
ITINERARY_GENERATION = "itinerary_generation"
BOOKING_ASSISTANCE = "booking_assistance"
BUDGET_ANALYSIS = "budget_analysis"
LOCAL_GUIDANCE = "local_guidance"
EMERGENCY_GUIDANCE = "emergency_guidance"

GENERATION_CAPABILITIES = frozenset(
    {
        GENERAL_GENERATION,
        ITINERARY_GENERATION,
        BOOKING_ASSISTANCE,
        BUDGET_ANALYSIS,
        LOCAL_GUIDANCE,
        EMERGENCY_GUIDANCE,
    }
)
