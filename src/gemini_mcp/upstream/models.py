"""Model preference resolution (``pro``/``flash`` to configured model ids)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from gemini_mcp.foundation.config.settings import DEFAULT_FLASH_MODEL, DEFAULT_PRO_MODEL

if TYPE_CHECKING:
    from gemini_mcp.foundation.config import UpstreamSettings


class ModelPreference(StrEnum):
    PRO = "pro"
    FLASH = "flash"

    @classmethod
    def parse(cls, value: str | None, default: ModelPreference | None = None) -> ModelPreference:
        """Anything mentioning "flash" selects Flash; everything else is Pro."""
        if not value:
            return default or cls.PRO
        return cls.FLASH if "flash" in value.lower() else cls.PRO


@dataclass(frozen=True, slots=True)
class ModelCatalog:
    pro: str = DEFAULT_PRO_MODEL
    flash: str = DEFAULT_FLASH_MODEL

    @classmethod
    def from_settings(cls, settings: UpstreamSettings) -> ModelCatalog:
        return cls(pro=settings.pro_model, flash=settings.flash_model)

    def resolve(self, preference: ModelPreference | str) -> str:
        pref = preference if isinstance(preference, ModelPreference) else ModelPreference.parse(preference)
        return self.flash if pref is ModelPreference.FLASH else self.pro
