"""Settings and logging setup.

Settings come from environment variables:

    SURF_PROVIDER: Model service, one of gemini, openai, openrouter
        (default: gemini)
    SURF_MODEL: Model name (default: gemini-2.0-flash)
    GEMINI_API_KEY / OPENAI_API_KEY / OPENROUTER_API_KEY: Key for the
        selected provider
    SURF_MAX_TURNS: Model turns per request (default: 100)
    SURF_COMMAND_TIMEOUT: Seconds a bash command may run (default: 60)
    E2B_API_KEY: Key for the desktop sandbox service
    SUPABASE_URL / SUPABASE_ANON_KEY: Message store (optional)
    SURF_LOG_LEVEL: Logging level (default: INFO)
"""

import logging
import os
from typing import Literal

from pydantic import BaseModel, Field

API_KEY_ENV = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'


class Settings(BaseModel):
    provider: Literal["gemini", "openai", "openrouter"] = "gemini"
    model: str = "gemini-2.0-flash"
    api_key: str | None = None
    max_turns: int = Field(default=100, ge=1)
    command_timeout: float = Field(default=60.0, gt=0)
    temperature: float | None = 0.1
    top_p: float | None = 0.95
    max_tokens: int | None = 8192
    e2b_api_key: str | None = None
    supabase_url: str | None = None
    supabase_key: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        provider = env.get("SURF_PROVIDER", "gemini")
        values = {
            "provider": provider,
            "api_key": env.get(API_KEY_ENV.get(provider, "")) or None,
            "e2b_api_key": env.get("E2B_API_KEY") or None,
            "supabase_url": env.get("SUPABASE_URL") or None,
            "supabase_key": env.get("SUPABASE_ANON_KEY") or None,
            "log_level": env.get("SURF_LOG_LEVEL", "INFO").upper(),
        }
        if "SURF_MODEL" in env:
            values["model"] = env["SURF_MODEL"]
        if "SURF_MAX_TURNS" in env:
            values["max_turns"] = env["SURF_MAX_TURNS"]
        if "SURF_COMMAND_TIMEOUT" in env:
            values["command_timeout"] = env["SURF_COMMAND_TIMEOUT"]
        return cls.model_validate(values)

    @property
    def api_key_env(self) -> str:
        return API_KEY_ENV[self.provider]


def configure_logging(level: str = "INFO", log_file: str | None = "surfer.log") -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
    )
