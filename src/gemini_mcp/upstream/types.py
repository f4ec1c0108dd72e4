"""Request/response types for the Gemini generateContent API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class GenerationParams:
    """Sampling controls sent as ``generationConfig``. None means upstream default."""
    temperature: float | None = None
    max_output_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.temperature is not None:
            out["temperature"] = self.temperature
        if self.max_output_tokens is not None:
            out["maxOutputTokens"] = self.max_output_tokens
        if self.top_p is not None:
            out["topP"] = self.top_p
        if self.top_k is not None:
            out["topK"] = self.top_k
        if self.stop_sequences:
            out["stopSequences"] = list(self.stop_sequences)
        return out


@dataclass(frozen=True, slots=True)
class Usage:
    """Token accounting from ``usageMetadata``."""
    prompt_tokens: int = 0
    response_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_metadata(cls, meta: dict[str, Any]) -> Usage:
        return cls(
            prompt_tokens=int(meta.get("promptTokenCount") or 0),
            response_tokens=int(meta.get("candidatesTokenCount") or 0),
            total_tokens=int(meta.get("totalTokenCount") or 0),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "response_tokens": self.response_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True, slots=True)
class GenerationResponse:
    """One successful generation."""
    text: str
    model: str
    usage: Usage | None = None
    finish_reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
