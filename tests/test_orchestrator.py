"""Tests for the conversation orchestrator."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import BlockingBackend, ScriptedBackend, make_model_client, structured_reply, unavailable

from jsonoracle.exceptions import InvalidModel, ModelTimeout, ValidationError
from jsonoracle.inference import ModelClient, ModelProvider
from jsonoracle.inference.openai_backend import OpenAIBackend
from jsonoracle.models.db import FailureReason
from jsonoracle.orchestration import ConversationOrchestrator
from jsonoracle.utils.retry import RetryConfig

FAST_RETRY = RetryConfig(max_retries=2, initial_delay=0.01, max_delay=0.02)

PAYLOAD = {"sales": [120, 135, 150, 90], "region": "north"}


def make_orchestrator(backend, **kwargs) -> ConversationOrchestrator:
    kwargs.setdefault("retry", FAST_RETRY)
    kwargs.setdefault("timeout", 2.0)
    return ConversationOrchestrator(make_model_client(backend), **kwargs)


class TestValidate:
    @pytest.mark.parametrize(
        "models,rounds",
        [
            ([], 1),
            (["llama2"], 0),
            (["llama2"], -1),
            (["llama2"], True),
            (["llama2"], 11),
            (["a", "b", "c", "d", "e", "f"], 1),
            (["llama2", "  "], 1),
        ],
    )
    def test_rejects(self, models, rounds):
        orchestrator = make_orchestrator(ScriptedBackend())
        with pytest.raises(ValidationError, match="InvalidRequest"):
            orchestrator.validate(models, rounds)

    def test_accepts(self):
        make_orchestrator(ScriptedBackend()).validate(["llama2", "mistral"], 10)


class TestConversation:
    @pytest.mark.asyncio
    async def test_two_models_build_on_each_other(self):
        backend = ScriptedBackend(
            {
                "llama2": [
                    structured_reply(
                        "North sales dipped in the last period.",
                        insights=[
                            {"kind": "anomaly", "description": "Sales fell 40%", "confidence": 0.9, "impact": "high"}
                        ],
                        recommendations=["Investigate the north region"],
                    )
                ],
                "mistral": [
                    structured_reply(
                        "Agree; the dip follows three periods of growth.",
                        insights=[
                            {"kind": "trend", "description": "Growth then drop", "confidence": 0.7, "impact": "medium"}
                        ],
                        recommendations=["investigate the North region", "Review pricing"],
                    )
                ],
            }
        )
        orchestrator = make_orchestrator(backend)

        outcome = await orchestrator.run("ecommerce", PAYLOAD, ["llama2", "mistral"], rounds=1)

        assert outcome.succeeded
        assert [t.model for t in outcome.turns] == ["llama2", "mistral"]
        assert [t.index for t in outcome.turns] == [0, 1]
        # The second model sees the first model's answer
        assert "North sales dipped" in backend.calls_for("mistral")[0]
        assert "North sales dipped" not in backend.calls_for("llama2")[0]
        assert [i.description for i in outcome.insights] == ["Sales fell 40%", "Growth then drop"]
        assert outcome.recommendations == ["Investigate the north region", "Review pricing"]
        assert outcome.summary == "Agree; the dip follows three periods of growth."
        assert outcome.metrics.data_points == 2
        assert outcome.metrics.models_used == ["llama2", "mistral"]
        assert outcome.metrics.models_dropped == []
        assert len(outcome.metrics.turn_latencies_ms) == 2
        assert outcome.data_sample == PAYLOAD

    @pytest.mark.asyncio
    async def test_rounds_repeat_models_in_order(self):
        backend = ScriptedBackend()
        outcome = await make_orchestrator(backend).run("generic", [1, 2], ["a", "b"], rounds=3)

        assert [(t.round, t.model) for t in outcome.turns] == [
            (1, "a"), (1, "b"), (2, "a"), (2, "b"), (3, "a"), (3, "b"),
        ]

    @pytest.mark.asyncio
    async def test_invalid_model_is_dropped(self):
        backend = ScriptedBackend({"ghost": [InvalidModel("ghost", "not found")]})

        outcome = await make_orchestrator(backend).run(
            "finance", PAYLOAD, ["llama2", "ghost"], rounds=2
        )

        assert outcome.succeeded
        assert outcome.metrics.models_dropped == ["ghost"]
        assert outcome.metrics.models_used == ["llama2"]
        # Terminal error: one call, never retried, never asked again in round 2
        assert len(backend.calls_for("ghost")) == 1
        failed = [t for t in outcome.turns if t.failed]
        assert len(failed) == 1
        assert failed[0].error == "invalid_model"
        assert failed[0].response == ""

    @pytest.mark.asyncio
    async def test_failure_markers_not_fed_to_later_prompts(self):
        backend = ScriptedBackend({"ghost": [InvalidModel("ghost")]})

        await make_orchestrator(backend).run("generic", {}, ["ghost", "llama2"])

        assert "## Round 1, ghost" not in backend.calls_for("llama2")[0]

    @pytest.mark.asyncio
    async def test_malformed_provider_response_drops_only_that_model(self):
        openai_client = MagicMock()
        openai_client.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(choices=[], model="gpt", usage=None)
        )
        scripted = ScriptedBackend()
        client = ModelClient(
            {
                ModelProvider.DEFAULT: scripted,
                ModelProvider.OPENAI: OpenAIBackend(api_key="", client=openai_client),
            }
        )
        orchestrator = ConversationOrchestrator(client, retry=FAST_RETRY, timeout=2.0)

        outcome = await orchestrator.run("generic", {"a": 1}, ["openai:gpt", "m1"], rounds=1)

        assert outcome.succeeded
        assert outcome.metrics.models_used == ["m1"]
        assert outcome.metrics.models_dropped == ["openai:gpt"]
        assert outcome.turns[0].error == "unavailable"
        assert "Analysis by m1." in outcome.turns[1].response

    @pytest.mark.asyncio
    async def test_unexpected_backend_exception_is_a_failed_turn(self):
        backend = ScriptedBackend({"broken": [IndexError("list index out of range")]})

        outcome = await make_orchestrator(backend).run(
            "generic", PAYLOAD, ["broken", "llama2"], rounds=2
        )

        assert outcome.succeeded
        assert outcome.metrics.models_dropped == ["broken"]
        assert outcome.metrics.models_used == ["llama2"]
        # Not retried, not asked again in round 2
        assert len(backend.calls_for("broken")) == 1
        assert outcome.turns[0].error == "model_error"
        assert [t.model for t in outcome.turns] == ["broken", "llama2", "llama2"]

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self):
        backend = ScriptedBackend(
            {"llama2": [unavailable("llama2"), ModelTimeout("llama2"), structured_reply("Recovered.")]}
        )

        outcome = await make_orchestrator(backend).run("generic", {}, ["llama2"])

        assert outcome.succeeded
        assert outcome.turns[0].attempts == 3
        assert outcome.turns[0].response.startswith("Recovered.")

    @pytest.mark.asyncio
    async def test_all_models_unavailable(self):
        backend = ScriptedBackend({"a": [unavailable("a")], "b": [unavailable("b")]})

        outcome = await make_orchestrator(backend).run("generic", PAYLOAD, ["a", "b"], rounds=3)

        assert not outcome.succeeded
        assert outcome.failure_reason == FailureReason.ALL_MODELS_UNAVAILABLE.value
        assert outcome.insights == []
        assert outcome.summary is None
        # 1 attempt + 2 retries each, then both dropped before round 2
        assert len(backend.calls_for("a")) == 3
        assert len(backend.calls_for("b")) == 3
        assert sorted(outcome.metrics.models_dropped) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_call_timeout_marks_turn(self):
        backend = ScriptedBackend(delay=0.5)
        orchestrator = make_orchestrator(
            backend, timeout=0.02, retry=RetryConfig(max_retries=0)
        )

        outcome = await orchestrator.run("generic", {}, ["llama2"])

        assert outcome.failure_reason == FailureReason.ALL_MODELS_UNAVAILABLE.value
        assert outcome.turns[0].error == "timeout"

    @pytest.mark.asyncio
    async def test_generic_insight_without_structured_output(self):
        backend = ScriptedBackend({"llama2": ["Plain prose only."]})

        outcome = await make_orchestrator(backend).run("generic", {}, ["llama2"])

        assert outcome.succeeded
        assert len(outcome.insights) == 1
        assert outcome.insights[0].confidence == 0.1
        assert outcome.summary == "Plain prose only."

    @pytest.mark.asyncio
    async def test_on_turn_callback(self):
        seen = []

        async def on_turn(turn):
            seen.append(turn.model)

        await make_orchestrator(ScriptedBackend()).run(
            "generic", {}, ["a", "b"], rounds=2, on_turn=on_turn
        )

        assert seen == ["a", "b", "a", "b"]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        backend = ScriptedBackend()
        cancel_event = asyncio.Event()
        cancel_event.set()

        outcome = await make_orchestrator(backend).run(
            "generic", {}, ["llama2"], cancel_event=cancel_event
        )

        assert outcome.failure_reason == FailureReason.CANCELLED.value
        assert outcome.turns == []
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_response_after_cancel_is_discarded(self):
        backend = BlockingBackend()
        cancel_event = asyncio.Event()
        orchestrator = make_orchestrator(backend)

        task = asyncio.create_task(
            orchestrator.run("generic", {}, ["a", "b"], cancel_event=cancel_event)
        )
        await backend.started.wait()
        cancel_event.set()
        backend.release.set()
        outcome = await task

        assert outcome.failure_reason == FailureReason.CANCELLED.value
        assert outcome.turns == []

    @pytest.mark.asyncio
    async def test_cancel_interrupts_backoff(self):
        backend = ScriptedBackend({"llama2": [unavailable("llama2")]})
        orchestrator = make_orchestrator(
            backend, retry=RetryConfig(max_retries=5, initial_delay=30.0, max_delay=30.0)
        )
        cancel_event = asyncio.Event()

        task = asyncio.create_task(
            orchestrator.run("generic", {}, ["llama2"], cancel_event=cancel_event)
        )
        while not backend.calls:
            await asyncio.sleep(0.01)
        cancel_event.set()
        outcome = await asyncio.wait_for(task, 2.0)

        assert outcome.failure_reason == FailureReason.CANCELLED.value
        assert len(backend.calls) == 1
