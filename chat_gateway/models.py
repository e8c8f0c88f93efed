"""Provider-neutral request/response shapes."""

from dataclasses import dataclass, field
from enum import Enum


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    role: ChatRole
    content: str

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(ChatRole.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(ChatRole.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(ChatRole.ASSISTANT, content)


class Capability(str, Enum):
    TEXT_GENERATION = "text_generation"
    STREAMING = "streaming"


@dataclass
class RequestOptions:
    """Options common to every provider. Unset fields fall back to config."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None

    # Which adapter these options are tagged for; None = any provider
    provider: str | None = None


@dataclass
class OpenAIRequestOptions(RequestOptions):
    stop: list[str] = field(default_factory=list)
    provider: str | None = "openai"


@dataclass
class AnthropicRequestOptions(RequestOptions):
    system_prompt: str | None = None
    provider: str | None = "anthropic"


@dataclass
class GoogleRequestOptions(RequestOptions):
    max_output_tokens: int | None = None
    provider: str | None = "google"


@dataclass
class HuggingFaceRequestOptions(RequestOptions):
    max_new_tokens: int | None = None
    top_k: int | None = None
    provider: str | None = "huggingface"


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ChatResponse:
    content: str
    model_id: str
    finish_reason: str
    usage: TokenUsage = field(default_factory=TokenUsage)

    def to_dict(self) -> dict:
        """OpenAI-compatible chat completion body."""
        return {
            "object": "chat.completion",
            "model": self.model_id,
            "choices": [{
                "index": 0,
                "message": {"role": "assistant", "content": self.content},
                "finish_reason": self.finish_reason,
            }],
            "usage": {
                "prompt_tokens": self.usage.input_tokens,
                "completion_tokens": self.usage.output_tokens,
                "total_tokens": self.usage.total_tokens,
            },
        }
