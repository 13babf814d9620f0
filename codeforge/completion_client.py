"""Async client for the text-completion service.

Wraps either the Ollama HTTP API (``/api/generate``) or an OpenAI-compatible
chat API (``/chat/completions``) behind one interface with timeout handling
and structured responses.  A single :class:`CompletionClient` owns the shared
``httpx.AsyncClient`` connection pool; role-scoped :class:`ModelHandle`
objects (planner, section generator, reviewer) are built on top of it once
at startup and injected into the pipeline.

Typical usage::

    handles = build_model_handles(Config.from_env())
    async with handles.client:
        text = await handles.planner.complete("plan", {"prompt": "...", ...})
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional, Union

import httpx
from pydantic import BaseModel, Discriminator, Field, Tag, TypeAdapter, ValidationError

from codeforge.config import Config
from codeforge.errors import UpstreamFailure
from codeforge.generation.prompts import PromptLibrary

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a senior software engineer. Answer with JSON only, "
    "without Markdown fences or commentary."
)


class CompletionResponse(BaseModel):
    """Structured response from a completion call."""

    text: str = Field(default="", description="Generated text")
    model: str = Field(default="", description="Model that produced the response")
    duration_ms: float = Field(default=0.0, description="Generation time in ms")
    success: bool = Field(default=True, description="Whether the request succeeded")
    error: str | None = Field(default=None, description="Error message on failure")


# ---------------------------------------------------------------------------
# Response envelopes
# ---------------------------------------------------------------------------
#
# Every response shape the client understands is one member of the tagged
# union below.  The tag is derived from which top-level key is present.


class OllamaEnvelope(BaseModel):
    kind: Literal["ollama"] = "ollama"
    response: str

    def content(self) -> str:
        return self.response


class ChatMessage(BaseModel):
    content: Optional[str] = None


class ChatChoice(BaseModel):
    message: ChatMessage


class ChatEnvelope(BaseModel):
    kind: Literal["chat"] = "chat"
    choices: list[ChatChoice]

    def content(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


class TextEnvelope(BaseModel):
    kind: Literal["text"] = "text"
    text: str

    def content(self) -> str:
        return self.text


class OutputEnvelope(BaseModel):
    kind: Literal["output"] = "output"
    output: str

    def content(self) -> str:
        return self.output


class Generation(BaseModel):
    text: Optional[str] = None
    content: Optional[str] = None
    message: Union[str, ChatMessage, None] = None

    def value(self) -> str:
        if self.text is not None:
            return self.text
        if self.content is not None:
            return self.content
        if isinstance(self.message, str):
            return self.message
        if self.message is not None:
            return self.message.content or ""
        return ""


class GenerationsEnvelope(BaseModel):
    kind: Literal["generations"] = "generations"
    generations: list[list[Generation]]

    def content(self) -> str:
        if not self.generations or not self.generations[0]:
            return ""
        return self.generations[0][0].value()


# Checked in this order; the first key present decides the shape.
_ENVELOPE_KEYS: tuple[tuple[str, str], ...] = (
    ("choices", "chat"),
    ("response", "ollama"),
    ("text", "text"),
    ("output", "output"),
    ("generations", "generations"),
)


def _envelope_tag(data: Any) -> str | None:
    if isinstance(data, BaseModel):
        return getattr(data, "kind", None)
    if isinstance(data, dict):
        for key, tag in _ENVELOPE_KEYS:
            if key in data:
                return tag
    return None


Envelope = Annotated[
    Union[
        Annotated[ChatEnvelope, Tag("chat")],
        Annotated[OllamaEnvelope, Tag("ollama")],
        Annotated[TextEnvelope, Tag("text")],
        Annotated[OutputEnvelope, Tag("output")],
        Annotated[GenerationsEnvelope, Tag("generations")],
    ],
    Discriminator(_envelope_tag),
]

_envelope_adapter: TypeAdapter[Any] = TypeAdapter(Envelope)


def parse_envelope(data: Any) -> Union[
    ChatEnvelope, OllamaEnvelope, TextEnvelope, OutputEnvelope, GenerationsEnvelope, None
]:
    """Classify a decoded response body, or return ``None`` for unknown shapes."""
    try:
        return _envelope_adapter.validate_python(data)
    except ValidationError:
        return None


def extract_completion_text(data: Any) -> str | None:
    """Return the completion text carried by *data*.

    A bare string is its own content.  Returns ``None`` when *data* matches
    none of the known envelope shapes.
    """
    if isinstance(data, str):
        return data
    envelope = parse_envelope(data)
    if envelope is None:
        return None
    return envelope.content()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


class CompletionClient:
    """Async client for an Ollama or OpenAI-compatible completion API.

    The underlying ``httpx.AsyncClient`` is created lazily and shared by every
    call, so concurrent section requests reuse one connection pool.  Close it
    with :meth:`aclose` or by using the client as an async context manager.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        provider: str = "ollama",
        api_key: str = "",
        timeout: int = 120,
        max_connections: int = 10,
        temperature: float = 0.7,
        max_tokens: int = 4000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if provider not in ("ollama", "openai"):
            raise ValueError(f"Unknown completion provider: {provider!r}")
        self.base_url = base_url.rstrip("/")
        self.provider = provider
        self.api_key = api_key
        self.timeout = timeout
        self.max_connections = max_connections
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        """Return the shared ``AsyncClient``, creating it on first use."""
        if self._http is None or self._http.is_closed:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                limits=httpx.Limits(
                    max_connections=self.max_connections,
                    max_keepalive_connections=self.max_connections,
                ),
                transport=self._transport,
            )
        return self._http

    def _build_request(self, prompt: str, model: str, system: str) -> tuple[str, dict[str, Any]]:
        if self.provider == "openai":
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            return "/chat/completions", {
                "model": model,
                "messages": messages,
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
                "stream": False,
            }

        payload: dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.temperature, "num_predict": self.max_tokens},
        }
        if system:
            payload["system"] = system
        return "/api/generate", payload

    @staticmethod
    def _extract_duration_ms(data: dict, elapsed: float) -> float:
        """Prefer Ollama's server-side ``total_duration`` (nanoseconds)."""
        ns = data.get("total_duration") if isinstance(data, dict) else None
        if ns:
            return ns / 1_000_000.0
        return elapsed * 1000.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "CompletionClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(self, prompt: str, model: str, system: str = "") -> CompletionResponse:
        """Generate text from a prompt.

        Transport and protocol errors are reported through the returned
        ``CompletionResponse``; task cancellation propagates to the caller.
        """
        path, payload = self._build_request(prompt, model, system)
        started = time.monotonic()

        try:
            response = await self._client().post(path, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.ConnectError:
            return CompletionResponse(
                model=model,
                success=False,
                error=f"Cannot connect to completion service at {self.base_url}.",
            )
        except httpx.TimeoutException:
            return CompletionResponse(
                model=model,
                success=False,
                error=f"Request to completion service timed out after {self.timeout}s.",
            )
        except httpx.HTTPStatusError as exc:
            return CompletionResponse(
                model=model,
                success=False,
                error=(
                    f"Completion service returned HTTP {exc.response.status_code}: "
                    f"{exc.response.text[:500]}"
                ),
            )
        except (httpx.HTTPError, ValueError) as exc:
            return CompletionResponse(
                model=model,
                success=False,
                error=f"Unexpected error during completion request: {exc}",
            )

        text = extract_completion_text(data)
        if text is None:
            keys = sorted(data) if isinstance(data, dict) else type(data).__name__
            return CompletionResponse(
                model=model,
                success=False,
                error=f"Unrecognised completion response shape: {keys}",
            )

        return CompletionResponse(
            text=text,
            model=data.get("model", model) if isinstance(data, dict) else model,
            duration_ms=self._extract_duration_ms(data, time.monotonic() - started),
            success=True,
        )

    async def list_models(self) -> list[str]:
        """Return the names of the models the service offers.

        Returns an empty list if the service is unreachable.
        """
        path = "/models" if self.provider == "openai" else "/api/tags"
        try:
            response = await self._client().get(path)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError):
            return []
        if self.provider == "openai":
            return sorted(m.get("id", "") for m in data.get("data", []) if m.get("id"))
        return sorted(m.get("name", "") for m in data.get("models", []) if m.get("name"))

    async def is_available(self) -> bool:
        """Return ``True`` if the service answers its model-listing endpoint."""
        path = "/models" if self.provider == "openai" else "/api/tags"
        try:
            response = await self._client().get(path)
        except httpx.HTTPError:
            return False
        return response.status_code == 200


# ---------------------------------------------------------------------------
# Role-scoped handles
# ---------------------------------------------------------------------------


class ModelHandle:
    """One configured model for one pipeline role.

    ``complete`` renders a prompt template, performs exactly one completion
    call bounded by ``timeout`` and returns the raw text.  Failures surface
    as :class:`~codeforge.errors.UpstreamFailure`.
    """

    def __init__(
        self,
        client: CompletionClient,
        model: str,
        role: str,
        prompts: PromptLibrary | None = None,
        timeout: float | None = None,
        system: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self.client = client
        self.model = model
        self.role = role
        self.prompts = prompts or PromptLibrary()
        self.timeout = timeout if timeout is not None else client.timeout
        self.system = system

    def __repr__(self) -> str:
        return f"ModelHandle(role={self.role!r}, model={self.model!r})"

    async def complete(self, template_id: str, variables: dict[str, Any]) -> str:
        prompt = self.prompts.render(template_id, variables)
        logger.debug("%s: requesting %s completion (%d chars)", self.role, template_id, len(prompt))

        try:
            response = await asyncio.wait_for(
                self.client.generate(prompt, model=self.model, system=self.system),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamFailure(
                f"{self.role} completion timed out after {self.timeout}s"
            ) from exc

        if not response.success:
            raise UpstreamFailure(f"{self.role} completion failed: {response.error}")

        logger.debug(
            "%s: %s completion returned %d chars in %.0f ms",
            self.role, template_id, len(response.text), response.duration_ms,
        )
        return response.text


@dataclass
class ModelHandles:
    """The shared client plus one handle per pipeline role."""

    client: CompletionClient
    planner: ModelHandle
    section: ModelHandle
    reviewer: ModelHandle


def build_model_handles(
    config: Config,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ModelHandles:
    """Construct the shared client and role handles from configuration."""
    llm = config.llm
    client = CompletionClient(
        base_url=llm.url,
        provider=llm.provider,
        api_key=llm.api_key,
        timeout=llm.timeout,
        max_connections=llm.max_connections,
        temperature=llm.temperature,
        max_tokens=llm.max_tokens,
        transport=transport,
    )
    prompts = PromptLibrary()
    return ModelHandles(
        client=client,
        planner=ModelHandle(client, llm.planner_model, "planner", prompts),
        section=ModelHandle(client, llm.section_model, "section", prompts),
        reviewer=ModelHandle(client, llm.reviewer_model, "reviewer", prompts),
    )
