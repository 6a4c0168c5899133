"""
CONFIGURATION MODULE
====================

PURPOSE:
  Central place for all RelayChat settings: API keys, endpoint URLs, model
  name, sampling parameters, retry parameters and the system prompt used to
  inject web search results.

WHAT THIS FILE DOES:
  - Loads environment variables from .env (so API keys stay out of code).
  - Defines module-level defaults for everything that is not a secret.
  - Builds a RelaySettings value with load_settings(). The pipeline receives
    that value explicitly; nothing downstream reads os.environ.

USAGE:
  from config import load_settings
  settings = load_settings()
  settings.require_keys()   # raises ConfigurationError if a key is missing
"""

import os
import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from app.exceptions import ConfigurationError


logger = logging.getLogger("RelayChat")


# -----------------------------------------------------------------------------
# ENVIRONMENT
# -----------------------------------------------------------------------------
# Load environment variables from .env file (if it exists).
load_dotenv()


# ============================================================================
# COMPLETION PROVIDER (TOGETHER AI)
# ============================================================================
# OpenAI-compatible chat completions endpoint; we always request stream=true
# and relay the SSE body.

TOGETHER_API_URL = "https://api.together.xyz/v1/chat/completions"
TOGETHER_MODEL = "deepseek-ai/DeepSeek-V3"

TEMPERATURE = 0.7
TOP_P = 0.95
TOP_K = 50

# ============================================================================
# SEARCH PROVIDER (TAVILY)
# ============================================================================
# Tavily results are injected verbatim into the system message.

SEARCH_DEPTH = "advanced"
SEARCH_MAX_RESULTS = 5

# ============================================================================
# RETRY / TIMEOUTS
# ============================================================================
# MAX_RETRIES counts retries after the first attempt (3 -> 4 attempts).
# RETRY_DEADLINE caps the total time spent retrying; None means no cap.

MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0  # seconds, doubled after each failure
RETRY_DEADLINE: Optional[float] = None
CONNECT_TIMEOUT = 10.0

# ============================================================================
# SYSTEM PROMPT
# ============================================================================

SEARCH_SYSTEM_PROMPT = (
    "You are a highly intelligent and helpful AI assistant. Use the following "
    "search results to help answer the user's question, but also include your "
    "own knowledge. Search results:\n{search_results}"
)


class RelaySettings(BaseModel):
    """
    Everything the relay pipeline needs, passed in explicitly.

    Keys default to "" so a settings object can always be built; the request
    handler calls require_keys() before touching the network.
    """

    model_config = ConfigDict(frozen=True)

    together_api_key: str = ""
    tavily_api_key: str = ""
    together_api_url: str = TOGETHER_API_URL
    model: str = TOGETHER_MODEL
    temperature: float = TEMPERATURE
    top_p: float = TOP_P
    top_k: int = TOP_K
    search_depth: str = SEARCH_DEPTH
    search_max_results: int = SEARCH_MAX_RESULTS
    max_retries: int = MAX_RETRIES
    initial_retry_delay: float = INITIAL_RETRY_DELAY
    retry_deadline: Optional[float] = RETRY_DEADLINE
    connect_timeout: float = CONNECT_TIMEOUT
    environment: str = "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    def require_keys(self) -> None:
        """Raise ConfigurationError naming the first missing API key."""
        if not self.together_api_key:
            raise ConfigurationError("TOGETHER_API_KEY is not configured")
        if not self.tavily_api_key:
            raise ConfigurationError("TAVILY_API_KEY is not configured")


def _env_number(name: str, cast, default):
    """Read a non-negative number from the environment, falling back to default on bad input."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", name, raw)
        return default
    if value < 0:
        logger.warning("Ignoring %s=%r: must not be negative", name, raw)
        return default
    return value


def _optional_float(name: str) -> Optional[float]:
    return _env_number(name, float, None)


def load_settings() -> RelaySettings:
    """
    Build RelaySettings from the process environment.

    Missing keys are NOT an error here; they are reported per request so the
    server can still start and answer /health.
    """
    return RelaySettings(
        together_api_key=os.getenv("TOGETHER_API_KEY", "").strip(),
        tavily_api_key=os.getenv("TAVILY_API_KEY", "").strip(),
        together_api_url=os.getenv("TOGETHER_API_URL", TOGETHER_API_URL),
        model=os.getenv("TOGETHER_MODEL", TOGETHER_MODEL),
        max_retries=_env_number("MAX_RETRIES", int, MAX_RETRIES),
        initial_retry_delay=_env_number("INITIAL_RETRY_DELAY", float, INITIAL_RETRY_DELAY),
        retry_deadline=_optional_float("RETRY_DEADLINE"),
        environment=os.getenv("APP_ENV", "production"),
    )
