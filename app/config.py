"""
config.py
-----------
Settings for the DeepSeek node, read from environment variables (and a local .env).
"""
from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEEPSEEK_API_URL = "https://api.deepseek.com/chat/completions"


class Settings(BaseModel):
    deepseek_url: str = Field(default_factory=lambda: os.getenv("DEEPSEEK_URL", DEEPSEEK_API_URL))
    # name of the variable holding the key, not the key itself
    api_key_env: str = Field(default_factory=lambda: os.getenv("DEEPSEEK_API_KEY_ENV", "DEEPSEEK_API_KEY"))
    timeout: float = Field(default_factory=lambda: float(os.getenv("DEEPSEEK_TIMEOUT", "60")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


settings = Settings()
