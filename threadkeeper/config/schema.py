"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TRUNCATE_BY = 0.8
DEFAULT_ADDITIONAL_COMPRESSED = 20000
DEFAULT_COMPRESSION_CHAR_LIMIT = 560


def _flat_key(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


class CompactionSettings(BaseModel):
    """Token budget for history compaction.

    Accepts a flat mapping whose keys may be camelCase (``truncateAfter``),
    snake_case (``truncate_after``) or all-lowercase (``truncateafter``).
    Thresholds are not cross-validated: ``truncate_after <= compress_after``
    simply means the truncation branch wins.
    """
    compress_after: int = 80_000
    truncate_after: int = 100_000
    truncate_by: float | None = None  # fraction of truncate_after if <= 1, else absolute tokens
    min_starting_tokens: int = 0
    additional_compressed: int | None = None
    compression_char_limit: int | None = None
    truncate_new_tag: bool = False
    compress_new_tag: bool = False

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        by_flat = {_flat_key(name): name for name in cls.model_fields}
        return {by_flat.get(_flat_key(k), k): v for k, v in data.items()}

    @property
    def target_tokens(self) -> float:
        """Size to truncate down to."""
        if self.truncate_by is not None and self.truncate_by > 1:
            return self.truncate_by
        return self.truncate_after * (self.truncate_by or DEFAULT_TRUNCATE_BY)

    @property
    def compressed_allowance(self) -> int:
        if self.additional_compressed is None:
            return DEFAULT_ADDITIONAL_COMPRESSED
        return self.additional_compressed

    @property
    def char_limit(self) -> int:
        if self.compression_char_limit is None:
            return DEFAULT_COMPRESSION_CHAR_LIMIT
        return self.compression_char_limit


class AutosaveConfig(CompactionSettings):
    """Checkpointing after each turn, with compaction before each save."""
    enabled: bool = False
    checkpoint_dir: str = "~/.threadkeeper/checkpoints"

    @property
    def checkpoint_path(self) -> Path:
        return Path(self.checkpoint_dir).expanduser()


class GenerationConfig(BaseModel):
    """Sampling and output options forwarded to the backend."""
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    thinking_effort: str | None = None  # "low" | "medium" | "high"
    response_mime_type: str | None = None
    system_instruction: str | None = None


class ProviderConfig(BaseModel):
    """LLM backend configuration."""
    model: str = "openai/gpt-4o-mini"
    api_key: str = ""
    api_base: str | None = None
    stream: bool = True


class HooksConfig(BaseModel):
    """Shell commands that receive event JSON on stdin."""
    tool_call: str | None = None


class AgentConfig(BaseModel):
    max_tool_iterations: int = 20


class Config(BaseSettings):
    """Root configuration for threadkeeper."""
    model_config = SettingsConfigDict(
        env_prefix="THREADKEEPER_",
        env_nested_delimiter="__",
    )

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    autosave: AutosaveConfig = Field(default_factory=AutosaveConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
