from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_API_URL = "http://localhost:3000"
DEFAULT_GREETING = (
    "Bonjour ! Comment puis-je vous aider avec nos solutions de cybersécurité aujourd'hui ?"
)
DEFAULT_FALLBACK_MESSAGE = (
    "Désolé, je n'ai pas pu traiter votre demande. Veuillez réessayer plus tard."
)


@dataclass(frozen=True)
class Settings:
    """Configuration container for the remote storefront API and chat texts."""
    api_url: str
    request_timeout: float
    greeting_text: str
    fallback_text: str
    log_level: str


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables.
    Dependencies: Uses os.getenv; callers load .env beforehand.
    Failure Modes: Invalid REQUEST_TIMEOUT raises ValueError.
    If Removed: The API client cannot find the storefront backend.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Strip the trailing slash so endpoint paths join cleanly.
    api_url = os.getenv("STOREFRONT_API_URL", DEFAULT_API_URL).rstrip("/")
    request_timeout = float(os.getenv("REQUEST_TIMEOUT", "30"))
    if request_timeout <= 0:
        raise ValueError("REQUEST_TIMEOUT must be positive")

    return Settings(
        api_url=api_url,
        request_timeout=request_timeout,
        greeting_text=os.getenv("CHAT_GREETING") or DEFAULT_GREETING,
        fallback_text=os.getenv("CHAT_FALLBACK_MESSAGE") or DEFAULT_FALLBACK_MESSAGE,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
