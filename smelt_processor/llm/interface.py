"""Abstract LLM client interface and request/response data models.

Concrete implementations (e.g., OpenRouter) subclass LLMClient.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant"]


@dataclass
class Message:
    """One chat message. ``content`` is text or a list of content parts."""

    role: Role
    content: str | list[dict[str, Any]]

    def to_payload(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ExternalCallResult:
    """Outcome of one successful client call."""

    content: str
    model: str
    usage: TokenUsage | None = None


@dataclass
class CompletionOptions:
    """Per-call options.

    ``api_key`` is the caller's credential; when None the client falls back
    to its system credential.
    """

    api_key: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class LLMClient(ABC):
    """Abstract base class for text generation and transcription clients."""

    @abstractmethod
    async def complete(
        self, messages: list[Message], options: CompletionOptions | None = None
    ) -> ExternalCallResult:
        """Generate a chat completion for the given messages."""

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        options: CompletionOptions | None = None,
    ) -> ExternalCallResult:
        """Transcribe an audio payload to plain text."""
