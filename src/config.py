"""Runtime configuration, read from the environment."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_DATA_PATH = "data/fmea-data.json"
DEFAULT_AI_MODEL = "claude-sonnet-4-20250514"


class AppConfig(BaseModel):
    data_path: Path = Field(default=Path(DEFAULT_DATA_PATH), description="JSON datastore file")
    anthropic_api_key: Optional[str] = Field(default=None, repr=False)
    ai_model: str = DEFAULT_AI_MODEL
    ai_max_tokens: int = Field(default=2000, ge=1)
    ai_max_retries: int = Field(default=3, ge=0)

    @classmethod
    def from_env(cls) -> "AppConfig":
        env = os.environ
        return cls(
            data_path=Path(env.get("FMEA_DATA_PATH") or DEFAULT_DATA_PATH),
            anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
            ai_model=env.get("FMEA_AI_MODEL") or DEFAULT_AI_MODEL,
            ai_max_tokens=int(env.get("FMEA_AI_MAX_TOKENS") or 2000),
            ai_max_retries=int(env.get("FMEA_AI_MAX_RETRIES") or 3),
        )
