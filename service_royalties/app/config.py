"""
Configuration for the Royalty Engine.
"""

from enum import Enum
from typing import Tuple

from pydantic import Field, field_validator
from pydantic_settings import SettingsConfigDict

from shared.config import BaseConfig
from shared.errors import ConfigurationError


class TierOutOfRangePolicy(str, Enum):
    """What to do when a quantity falls outside every configured tier."""
    CLAMP = "clamp"
    UNMATCHED = "unmatched"


DEFAULT_ABSTRACT_TERRITORIES: Tuple[str, ...] = (
    "primary", "secondary", "tertiary", "domestic", "international",
    "north", "south", "east", "west",
)

DEFAULT_STOP_WORDS: Tuple[str, ...] = (
    "and", "or", "the", "a", "an", "of", "in", "on", "at", "to", "for",
)


class EngineConfig(BaseConfig):
    """Royalty engine settings, read from ``ROYALTY_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ROYALTY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    default_priority: int = Field(default=50, description="Priority for rules that carry none")
    tier_out_of_range: TierOutOfRangePolicy = Field(
        default=TierOutOfRangePolicy.CLAMP,
        description="Legacy tier policy for quantities outside every tier"
    )
    gross_amount_tolerance: float = Field(
        default=1.01,
        description="Flag a line when royalty exceeds gross amount times this factor"
    )
    max_workers: int = Field(default=1, description="Worker threads for the per-line loop")
    abstract_territories: Tuple[str, ...] = Field(default=DEFAULT_ABSTRACT_TERRITORIES)
    category_stop_words: Tuple[str, ...] = Field(default=DEFAULT_STOP_WORDS)

    @field_validator("max_workers")
    @classmethod
    def _check_workers(cls, value: int) -> int:
        if value < 1:
            raise ConfigurationError(
                "max_workers must be at least 1",
                details={"max_workers": value}
            )
        return value

    @field_validator("abstract_territories", "category_stop_words")
    @classmethod
    def _normalize_words(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(word.strip().lower() for word in value if word and word.strip())


def get_config(**overrides) -> EngineConfig:
    """Get engine configuration, applying explicit overrides over the environment."""
    return EngineConfig(**overrides)
