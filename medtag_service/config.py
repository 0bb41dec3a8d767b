"""
Runtime configuration for the MedTag service.

Values come from the process environment, optionally seeded from a .env
file. Settings are read once and cached; tests call get_settings.cache_clear()
after patching the environment.
"""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1/chat/completions"
DEFAULT_CHAT_URL = "https://api.openai.com/v1/chat/completions"
PROVIDERS = ("gateway", "gemini", "mock")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    return max(0.1, float(value))


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    return max(1, int(value))


@dataclass(frozen=True)
class Settings:
    supabase_url: str = ""
    supabase_anon_key: str = ""

    ai_provider: str = "gateway"
    ai_gateway_url: str = DEFAULT_GATEWAY_URL
    ai_gateway_api_key: Optional[str] = None
    diagnosis_model: str = "google/gemini-2.5-flash"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"

    openai_api_key: Optional[str] = None
    chat_api_url: str = DEFAULT_CHAT_URL
    chat_model: str = "gpt-4o-mini"

    model_timeout_seconds: float = 60.0
    store_timeout_seconds: float = 10.0

    rate_limit_max_requests: int = 10
    rate_limit_window_seconds: int = 60

    cors_origins: tuple = field(default_factory=lambda: ("http://localhost:5173",))
    public_app_url: str = "http://localhost:5173"
    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        provider = os.getenv("AI_PROVIDER", "gateway").strip().lower()
        if provider not in PROVIDERS:
            raise RuntimeError(
                f"Unknown AI_PROVIDER '{provider}'. Expected one of: {', '.join(PROVIDERS)}"
            )

        origins = os.getenv("CORS_ORIGINS", "http://localhost:5173")

        return cls(
            supabase_url=os.getenv("SUPABASE_URL", "").rstrip("/"),
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
            ai_provider=provider,
            ai_gateway_url=os.getenv("AI_GATEWAY_URL", DEFAULT_GATEWAY_URL),
            ai_gateway_api_key=os.getenv("AI_GATEWAY_API_KEY") or os.getenv("LOVABLE_API_KEY"),
            diagnosis_model=os.getenv("DIAGNOSIS_MODEL", "google/gemini-2.5-flash"),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            chat_api_url=os.getenv("CHAT_API_URL", DEFAULT_CHAT_URL),
            chat_model=os.getenv("CHAT_MODEL", "gpt-4o-mini"),
            model_timeout_seconds=_env_float("MODEL_TIMEOUT_SECONDS", 60.0),
            store_timeout_seconds=_env_float("STORE_TIMEOUT_SECONDS", 10.0),
            rate_limit_max_requests=_env_int("RATE_LIMIT_MAX_REQUESTS", 10),
            rate_limit_window_seconds=_env_int("RATE_LIMIT_WINDOW_SECONDS", 60),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            public_app_url=os.getenv("PUBLIC_APP_URL", "http://localhost:5173").rstrip("/"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON", True),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings."""
    return Settings.from_env()
