"""
Process configuration.

Values come from the environment (a local .env file is loaded first) and are
read once at startup into a Settings object that gets passed around
explicitly.
"""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_MODEL = "llama-3.3-70b-versatile"


def split_keys(raw: Optional[str]) -> list[str]:
    """Parse a comma-separated key list, dropping blanks."""
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]


class Settings(BaseModel):
    groq_api_keys: list[str] = Field(default_factory=list)
    groq_model: str = DEFAULT_MODEL
    langsearch_api_keys: list[str] = Field(default_factory=list)
    core_api_key: Optional[str] = None
    semantic_scholar_api_key: Optional[str] = None
    openalex_email: str = "user@example.com"
    rate_limit_db_path: Optional[str] = None
    log_level: str = "INFO"


def load_settings(env: Optional[dict[str, str]] = None) -> Settings:
    if env is None:
        load_dotenv()
        env = dict(os.environ)

    return Settings(
        groq_api_keys=split_keys(env.get("GROQ_API_KEYS") or env.get("GROQ_API_KEY")),
        groq_model=env.get("GROQ_MODEL") or DEFAULT_MODEL,
        langsearch_api_keys=split_keys(
            env.get("LANGSEARCH_API_KEYS") or env.get("LANGSEARCH_API_KEY")
        ),
        core_api_key=env.get("CORE_API_KEY") or None,
        semantic_scholar_api_key=env.get("SEMANTIC_SCHOLAR_API_KEY") or None,
        openalex_email=env.get("OPENALEX_EMAIL") or "user@example.com",
        rate_limit_db_path=env.get("RATE_LIMIT_DB_PATH") or None,
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )
