"""Tests for the boundary schemas, configuration validation and errors."""

import dataclasses

import pytest
from pydantic import ValidationError

from src.tripweaver.config import IntentConfig, LearningConfig, ProviderConfig, WorkflowConfig
from src.tripweaver.exceptions import ConfigurationError, ServerError
from src.tripweaver.schemas import MAX_UTTERANCE_LENGTH, InboundRequest, OrchestrationResponse


class TestInboundRequest:
    """Tests for inbound request validation."""

    def test_camel_case_payload(self):
        request = InboundRequest.model_validate(
            {
                "userId": " traveller-42 ",
                "utterance": "Plan a 5-day trip to Lisbon",
                "requestId": "req-1",
                "conversationHistory": [{"role": "user", "content": "hi"}],
                "sessionAttributes": {"home_city": "London"},
            }
        )

        assert request.user_id == "traveller-42"
        assert request.conversation_history[0].content == "hi"

    def test_snake_case_names_are_accepted(self):
        request = InboundRequest(user_id="alice", utterance="hello")
        assert request.user_id == "alice"

    @pytest.mark.parametrize(
        "payload",
        [
            {"utterance": "hello"},
            {"userId": "", "utterance": "hello"},
            {"userId": "   ", "utterance": "hello"},
            {"userId": "alice", "utterance": "x" * (MAX_UTTERANCE_LENGTH + 1)},
        ],
    )
    def test_invalid_requests(self, payload):
        with pytest.raises(ValidationError):
            InboundRequest.model_validate(payload)

    def test_to_context_is_immutable(self):
        context = InboundRequest(
            userId="alice",
            utterance="hello",
            requestId="req-7",
            sessionAttributes={"mood": "calm"},
        ).to_context()

        assert context.request_id == "req-7"
        assert context.conversation_history == ()
        with pytest.raises(dataclasses.FrozenInstanceError):
            context.utterance = "changed"
        with pytest.raises(TypeError):
            context.session_attributes["mood"] = "stressed"

    def test_to_context_generates_request_id(self):
        first = InboundRequest(userId="alice", utterance="hello").to_context()
        second = InboundRequest(userId="alice", utterance="hello").to_context()
        assert first.request_id != second.request_id


class TestOrchestrationResponse:
    def test_to_wire(self):
        response = OrchestrationResponse(
            request_id="req-1",
            message="Day 1: Alfama.",
            state="completed",
            carbon_saved=190.2,
            backup_plans=[{"trigger": "rain", "alternative": "museums", "confidence": 0.7}],
        )

        wire = response.to_wire()

        assert wire["requestId"] == "req-1"
        assert wire["carbonSaved"] == 190.2
        assert wire["emotionalImpact"] is None
        assert wire["backupPlans"][0]["trigger"] == "rain"


class TestConfigValidation:
    """Tests for configuration errors."""

    @pytest.mark.parametrize(
        "factory,key",
        [
            (lambda: IntentConfig(width=0), "INTENT_WIDTH"),
            (lambda: IntentConfig(coherence_threshold=0.0), "INTENT_COHERENCE_THRESHOLD"),
            (lambda: IntentConfig(context_window=-1), "INTENT_CONTEXT_WINDOW"),
            (lambda: ProviderConfig(max_retries=0), "PROVIDER_MAX_RETRIES"),
            (lambda: ProviderConfig(failure_threshold=0), "PROVIDER_FAILURE_THRESHOLD"),
            (lambda: WorkflowConfig(max_parallel_nodes=0), "WORKFLOW_MAX_PARALLEL_NODES"),
            (lambda: LearningConfig(learning_rate=1.5), "LEARNING_RATE"),
            (lambda: LearningConfig(exploration_rate=-0.1), "LEARNING_EXPLORATION_RATE"),
        ],
    )
    def test_invalid_values(self, factory, key):
        with pytest.raises(ConfigurationError) as exc_info:
            factory()

        assert exc_info.value.code == "CONFIGURATION_ERROR"
        assert key in exc_info.value.details["invalid_keys"]
        assert not exc_info.value.recoverable


class TestErrorFormatting:
    def test_str_includes_code_and_details(self):
        error = ServerError("upstream down", status_code=503)
        assert str(error).startswith("[")
        assert "upstream down" in str(error)
        assert "503" in str(error)
        assert error.recoverable
