"""Unit tests for oracle adapters, cancellation and model selection."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from specky.config import SpeckySettings
from specky.errors import GenerationCancelled, GenerationError
from specky.oracle import (
    CancellationToken,
    LiteLLMOracle,
    ModelCatalog,
    ModelSelector,
    ScriptedOracle,
    collect_text,
    parse_model_override,
    user_message,
)


def litellm_chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


async def stream_of(*chunks):
    for chunk in chunks:
        yield chunk


class TestCancellationToken:
    """Test cases for CancellationToken."""

    def test_cancel_is_idempotent(self):
        """Test cancelling twice leaves the token cancelled."""
        token = CancellationToken()
        assert not token.is_cancelled

        token.cancel()
        token.cancel()

        assert token.is_cancelled

    def test_raise_if_cancelled(self):
        """Test the raising helper."""
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()

        with pytest.raises(GenerationCancelled):
            token.raise_if_cancelled()


class TestScriptedOracle:
    """Test cases for the scripted oracle."""

    async def test_responses_in_order_then_repeat(self):
        """Test canned responses are replayed and the last one repeats."""
        oracle = ScriptedOracle(["first", "second"])

        assert await collect_text(oracle, [user_message("a")]) == "first"
        assert await collect_text(oracle, [user_message("b")]) == "second"
        assert await collect_text(oracle, [user_message("c")]) == "second"
        assert [call[0]["content"] for call in oracle.calls] == ["a", "b", "c"]

    async def test_echo_without_responses(self):
        """Test the last message is echoed when nothing is scripted."""
        oracle = ScriptedOracle()
        assert await collect_text(oracle, [user_message("sys"), user_message("echo me")]) == "echo me"

    async def test_chunking_and_on_chunk(self):
        """Test output is streamed in chunks."""
        chunks = []
        oracle = ScriptedOracle(["abcdef"], chunk_size=2)

        text = await collect_text(oracle, [user_message("x")], on_chunk=chunks.append)

        assert text == "abcdef"
        assert chunks == ["ab", "cd", "ef"]

    async def test_scripted_exception(self):
        """Test exception responses surface as generation errors."""
        oracle = ScriptedOracle([RuntimeError("upstream 500")])

        with pytest.raises(GenerationError) as exc_info:
            await collect_text(oracle, [user_message("x")])
        assert "upstream 500" in str(exc_info.value)
        assert exc_info.value.model == "scripted"


class TestCollectText:
    """Test cases for draining streams with cancellation."""

    async def test_cancelled_before_start(self):
        """Test a pre-cancelled token never calls the oracle."""
        token = CancellationToken()
        token.cancel()
        oracle = ScriptedOracle(["never"])

        with pytest.raises(GenerationCancelled):
            await collect_text(oracle, [user_message("x")], token)
        assert oracle.calls == []

    async def test_cancelled_mid_stream(self):
        """Test cancelling after the first chunk aborts the result."""
        token = CancellationToken()
        oracle = ScriptedOracle(["abcdef"], chunk_size=1)

        with pytest.raises(GenerationCancelled):
            await collect_text(oracle, [user_message("x")], token, on_chunk=lambda chunk: token.cancel())

    async def test_generation_errors_pass_through(self):
        """Test existing GenerationError instances are not re-wrapped."""
        oracle = ScriptedOracle([GenerationError("timeout", model="m")])

        with pytest.raises(GenerationError) as exc_info:
            await collect_text(oracle, [user_message("x")])
        assert str(exc_info.value) == "timeout"


class TestLiteLLMOracle:
    """Test cases for the litellm adapter."""

    async def test_streams_delta_content(self):
        """Test delta text is joined and empty chunks skipped."""
        response = stream_of(
            litellm_chunk("Hel"),
            litellm_chunk(None),
            SimpleNamespace(choices=[]),
            litellm_chunk("lo"),
        )
        with patch("specky.oracle.litellm.acompletion", new=AsyncMock(return_value=response)) as completion:
            text = await collect_text(LiteLLMOracle("gpt-4o", temperature=0.1), [user_message("hi")])

        assert text == "Hello"
        kwargs = completion.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["stream"] is True
        assert kwargs["temperature"] == 0.1
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]

    async def test_provider_error_is_wrapped(self):
        """Test provider failures become GenerationError with the model name."""
        with patch("specky.oracle.litellm.acompletion", new=AsyncMock(side_effect=RuntimeError("rate limited"))):
            with pytest.raises(GenerationError) as exc_info:
                await collect_text(LiteLLMOracle("gpt-4o"), [user_message("hi")])

        assert exc_info.value.model == "gpt-4o"
        assert "rate limited" in str(exc_info.value)

    async def test_cancellation_stops_stream(self):
        """Test a cancelled token ends the provider stream."""
        token = CancellationToken()
        response = stream_of(litellm_chunk("a"), litellm_chunk("b"))
        with patch("specky.oracle.litellm.acompletion", new=AsyncMock(return_value=response)):
            with pytest.raises(GenerationCancelled):
                await collect_text(LiteLLMOracle("gpt-4o"), [user_message("hi")], token, on_chunk=lambda c: token.cancel())


class TestModelOverride:
    """Test cases for --model parsing."""

    def test_flag_is_extracted(self):
        """Test the flag is removed and the model lowercased."""
        assert parse_model_override("Build the login page --model GPT-4o") == {
            "model": "gpt-4o",
            "clean_prompt": "Build the login page",
        }

    def test_flag_at_start(self):
        """Test the flag can lead the prompt."""
        assert parse_model_override("--model o1 plan it")["clean_prompt"] == "plan it"

    def test_no_flag(self):
        """Test prompts without the flag."""
        assert parse_model_override("Build the login page") is None


class TestModelSelector:
    """Test cases for per-command model selection."""

    def test_configured_models(self):
        """Test command overrides, planning and implementation defaults."""
        settings = SpeckySettings(planning_model="p", implementation_model="i", command_models={"plan": "o1"})
        selector = ModelSelector(settings, catalog=ModelCatalog(loader=lambda: []))

        assert selector.configured_model("plan") == "o1"
        assert selector.configured_model("specify") == "p"
        assert selector.configured_model("clarify") == "p"
        assert selector.configured_model("implement") == "i"
        assert selector.configured_model("review") == "i"

    def test_effective_model(self):
        """Test a prompt flag beats configuration."""
        selector = ModelSelector(SpeckySettings(implementation_model="i"), catalog=ModelCatalog(loader=lambda: []))

        assert selector.effective_model("implement", "do it") == {"model": "i", "clean_prompt": "do it"}
        assert selector.effective_model("implement", "do it --model x")["model"] == "x"

    def test_unknown_requested_model_falls_back(self):
        """Test a --model flag naming an unknown model uses the configured one."""
        catalog = ModelCatalog(loader=lambda: ["gpt-4o", "i"])
        selector = ModelSelector(SpeckySettings(implementation_model="i"), catalog=catalog)

        assert selector.effective_model("implement", "go --model gpt-4o")["model"] == "gpt-4o"
        assert selector.effective_model("implement", "go --model openai/gpt-4o")["model"] == "openai/gpt-4o"
        assert selector.effective_model("implement", "go --model mystery") == {"model": "i", "clean_prompt": "go"}

    def test_unknown_command_model_falls_back(self):
        """Test an unknown per-command model falls back to the planning model."""
        settings = SpeckySettings(planning_model="p", command_models={"plan": "mystery", "tasks": "o1"})
        selector = ModelSelector(settings, catalog=ModelCatalog(loader=lambda: ["p", "o1"]))

        assert selector.effective_model("plan", "")["model"] == "p"
        assert selector.effective_model("tasks", "")["model"] == "o1"

    def test_empty_catalog_passes_requests_through(self):
        """Test unknown availability never blocks a requested model."""
        selector = ModelSelector(catalog=ModelCatalog(loader=lambda: []))
        assert selector.select_model("anything", "fallback") == "anything"

    def test_display_name(self):
        """Test friendly names with fallback to the raw id."""
        selector = ModelSelector()
        assert selector.display_name("gpt-4o") == "GPT-4o"
        assert selector.display_name("custom/model") == "custom/model"


class TestModelCatalog:
    """Test cases for the lazy model cache."""

    def test_loaded_once_until_invalidated(self):
        """Test the loader runs lazily and again after invalidation."""
        calls = []

        def loader():
            calls.append(True)
            return ["a", "b"]

        catalog = ModelCatalog(loader=loader)
        assert calls == []
        assert catalog.models() == ["a", "b"]
        assert catalog.models() == ["a", "b"]
        assert len(calls) == 1

        catalog.invalidate()
        catalog.models()
        assert len(calls) == 2

    def test_loader_failure(self):
        """Test a failing loader yields an empty list and is retried next time."""
        calls = []

        def loader():
            calls.append(True)
            raise RuntimeError("offline")

        catalog = ModelCatalog(loader=loader)
        assert catalog.models() == []
        assert catalog.models() == []
        assert len(calls) == 2

    def test_selector_lists_catalog(self):
        """Test the selector delegates to its catalog."""
        selector = ModelSelector(catalog=ModelCatalog(loader=lambda: ["m"]))
        assert selector.available_models() == ["m"]
