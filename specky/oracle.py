"""Generative text oracle adapters and model selection.

An oracle takes role-tagged messages (``{"role": "user", "content": ...}``)
and a ``CancellationToken`` and yields text chunks. ``LiteLLMOracle`` talks
to a real provider; ``ScriptedOracle`` replays canned responses for tests
and offline runs.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence, Union

import litellm

from .config import SpeckySettings
from .errors import GenerationCancelled, GenerationError, SpeckyError


logger = logging.getLogger("specky.oracle")

Message = Dict[str, str]

PLANNING_COMMANDS = ("specify", "plan", "tasks", "clarify")
IMPLEMENTATION_COMMANDS = ("implement", "review")

MODEL_DISPLAY_NAMES = {
    "claude-opus-4.5": "Claude Opus 4.5",
    "claude-sonnet-4.5": "Claude Sonnet 4.5",
    "gpt-4o": "GPT-4o",
    "gpt-4o-mini": "GPT-4o Mini",
    "o1": "o1",
    "o1-mini": "o1 Mini",
}

_MODEL_FLAG = re.compile(r"--model\s+(\S+)", re.IGNORECASE)


def user_message(content: str) -> Message:
    return {"role": "user", "content": content}


class CancellationToken:
    """Cooperative cancellation flag shared between caller and oracle."""

    def __init__(self):
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise GenerationCancelled("Generation was cancelled")


class Oracle(Protocol):
    """Anything that turns messages into a stream of text chunks."""

    model: str

    def stream(self, messages: Sequence[Message], token: Optional[CancellationToken] = None) -> AsyncIterator[str]:
        ...


class LiteLLMOracle:
    """Streams completions through ``litellm.acompletion``."""

    def __init__(self, model: str, temperature: float = 0.2, timeout_s: int = 120, **completion_kwargs):
        self.model = model
        self.temperature = temperature
        self.timeout_s = timeout_s
        self.completion_kwargs = completion_kwargs

    async def stream(self, messages: Sequence[Message], token: Optional[CancellationToken] = None) -> AsyncIterator[str]:
        start_time = time.monotonic()
        logger.debug(f"Calling {self.model} with {len(messages)} message(s)")
        try:
            response = await litellm.acompletion(
                model=self.model,
                messages=list(messages),
                temperature=self.temperature,
                timeout=self.timeout_s,
                stream=True,
                **self.completion_kwargs,
            )
            async for chunk in response:
                if token is not None and token.is_cancelled:
                    break
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                text = getattr(choices[0].delta, "content", None)
                if text:
                    yield text
        except SpeckyError:
            raise
        except Exception as e:
            logger.error(f"Model call to {self.model} failed: {type(e).__name__}: {e}")
            raise GenerationError(f"Model call failed: {e}", model=self.model) from e

        duration = time.monotonic() - start_time
        logger.info(f"Model call to {self.model} finished in {duration:.2f}s")


class ScriptedOracle:
    """Replays canned responses in order, one per call.

    A response may be a string, or an exception instance to raise instead.
    ``calls`` records the messages of every invocation.
    """

    def __init__(
        self,
        responses: Sequence[Union[str, BaseException]] = (),
        model: str = "scripted",
        chunk_size: int = 64,
        repeat_last: bool = True,
    ):
        self.model = model
        self.responses = list(responses)
        self.chunk_size = chunk_size
        self.repeat_last = repeat_last
        self.calls: List[List[Message]] = []

    def _next_response(self, messages: Sequence[Message]) -> Union[str, BaseException]:
        if len(self.responses) > 1 or (self.responses and not self.repeat_last):
            return self.responses.pop(0)
        if self.responses:
            return self.responses[0]
        return messages[-1]["content"] if messages else ""

    async def stream(self, messages: Sequence[Message], token: Optional[CancellationToken] = None) -> AsyncIterator[str]:
        self.calls.append(list(messages))
        response = self._next_response(messages)
        if isinstance(response, BaseException):
            raise response
        for start in range(0, len(response), self.chunk_size):
            if token is not None and token.is_cancelled:
                return
            yield response[start:start + self.chunk_size]
            await asyncio.sleep(0)


async def collect_text(
    oracle: Oracle,
    messages: Sequence[Message],
    token: Optional[CancellationToken] = None,
    on_chunk: Optional[Callable[[str], None]] = None,
) -> str:
    """Drain an oracle stream into one string.

    Raises ``GenerationCancelled`` if the token fires at any point, and
    ``GenerationError`` for any other failure of the stream.
    """
    if token is not None:
        token.raise_if_cancelled()

    parts: List[str] = []
    try:
        async for chunk in oracle.stream(messages, token):
            if token is not None:
                token.raise_if_cancelled()
            parts.append(chunk)
            if on_chunk is not None:
                on_chunk(chunk)
    except SpeckyError:
        raise
    except Exception as e:
        raise GenerationError(f"Model call failed: {e}", model=getattr(oracle, "model", "")) from e

    if token is not None:
        token.raise_if_cancelled()
    return "".join(parts)


def parse_model_override(prompt: str) -> Optional[Dict[str, str]]:
    """Pull ``--model <name>`` out of a prompt.

    Returns ``{"model": ..., "clean_prompt": ...}`` or ``None``.
    """
    match = _MODEL_FLAG.search(prompt)
    if not match:
        return None
    return {
        "model": match.group(1).lower(),
        "clean_prompt": _MODEL_FLAG.sub("", prompt, count=1).strip(),
    }


def _default_model_loader() -> List[str]:
    return sorted(set(litellm.model_list))


class ModelCatalog:
    """Process-scoped, lazily populated list of known model names."""

    def __init__(self, loader: Callable[[], List[str]] = _default_model_loader):
        self._loader = loader
        self._models: Optional[List[str]] = None

    def models(self) -> List[str]:
        if self._models is None:
            try:
                self._models = list(self._loader())
            except Exception as e:
                logger.warning(f"Could not list available models: {e}")
                return []
        return list(self._models)

    def invalidate(self) -> None:
        self._models = None


model_catalog = ModelCatalog()


class ModelSelector:
    """Picks the model for each workflow command."""

    def __init__(self, settings: Optional[SpeckySettings] = None, catalog: Optional[ModelCatalog] = None):
        self.settings = settings or SpeckySettings()
        self.catalog = catalog or model_catalog

    def configured_model(self, command: str) -> str:
        model = self.settings.command_models.get(command)
        if model:
            return model
        return self._category_model(command)

    def _category_model(self, command: str) -> str:
        if command in IMPLEMENTATION_COMMANDS:
            return self.settings.implementation_model
        return self.settings.planning_model

    def effective_model(self, command: str, prompt: str) -> Dict[str, str]:
        """Model for ``command`` honouring a ``--model`` flag in ``prompt``.

        A requested model the catalog does not know falls back to the
        configured one, and an unknown per-command model falls back to the
        planning or implementation model.
        """
        configured = self.configured_model(command)
        default = self._category_model(command)
        if configured != default:
            configured = self.select_model(configured, default)
        override = parse_model_override(prompt)
        if override:
            return {"model": self.select_model(override["model"], configured), "clean_prompt": override["clean_prompt"]}
        return {"model": configured, "clean_prompt": prompt}

    def select_model(self, requested: str, fallback: str) -> str:
        """Return ``requested`` when it is available, otherwise ``fallback``.

        An empty catalog means availability is unknown and the request is
        passed through. Provider-prefixed names (``openai/gpt-4o``) match on
        the bare model name too.
        """
        available = self.catalog.models()
        if not available or requested in available:
            return requested
        if "/" in requested and requested.split("/", 1)[1] in available:
            return requested
        logger.warning(f"Model '{requested}' is not available, using '{fallback}'")
        return fallback

    def display_name(self, model: str) -> str:
        return MODEL_DISPLAY_NAMES.get(model, model)

    def available_models(self) -> List[str]:
        return self.catalog.models()


OracleFactory = Callable[[str], Oracle]


def litellm_factory(model: str) -> Oracle:
    return LiteLLMOracle(model)
