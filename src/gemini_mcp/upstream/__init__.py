"""Gemini REST adapter: one generateContent call, failures mapped to ToolError."""

from .client import GeminiClient
from .models import ModelCatalog, ModelPreference
from .types import GenerationParams, GenerationResponse, Usage

__all__ = ["GeminiClient", "GenerationParams", "GenerationResponse", "ModelCatalog", "ModelPreference", "Usage"]
