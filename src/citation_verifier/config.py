"""Settings and environment configuration."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .keypool import KeyPool

# Load .env from the working directory (no-op if absent)
load_dotenv(Path.cwd() / ".env")

USER_AGENT = "citation-verifier/0.1.0"


def _env_list(*names: str) -> list[str]:
    for name in names:
        value = os.getenv(name, "")
        if value.strip():
            return [v.strip() for v in value.split(",") if v.strip()]
    return []


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass
class Settings:
    """Runtime settings loaded from environment variables.

    CLI options override these per invocation.
    """

    # Decision step (local Ollama)
    ollama_model: str = field(default_factory=lambda: os.getenv("OLLAMA_MODEL", "llama3.1"))
    ollama_host: str | None = field(default_factory=lambda: os.getenv("OLLAMA_HOST") or None)
    decision_timeout: float = field(default_factory=lambda: _env_float("DECISION_TIMEOUT", 60))

    # Google Serper (web + scholar search)
    serper_api_keys: list[str] = field(
        default_factory=lambda: _env_list("SERPER_API_KEYS", "SERPER_API_KEY")
    )

    # CrossRef polite pool
    crossref_mailto: str = field(default_factory=lambda: os.getenv("CROSSREF_MAILTO", ""))

    http_timeout: float = field(default_factory=lambda: _env_float("HTTP_TIMEOUT", 30))

    # Verification loop
    max_iterations: int = field(default_factory=lambda: _env_int("MAX_ITERATIONS", 8))
    max_retries: int = field(default_factory=lambda: _env_int("MAX_RETRIES", 3))

    # Scheduling
    concurrency: int = field(default_factory=lambda: _env_int("CONCURRENCY", 3))
    file_concurrency: int = field(default_factory=lambda: _env_int("FILE_CONCURRENCY", 5))
    pace_delay: float = field(default_factory=lambda: _env_float("PACE_DELAY", 0.1))

    def key_pool(self) -> KeyPool:
        return KeyPool(self.serper_api_keys)

    def user_agent(self) -> str:
        if self.crossref_mailto:
            return f"{USER_AGENT} (mailto:{self.crossref_mailto})"
        return USER_AGENT

    def validate(self) -> list[str]:
        """Return a list of human-readable configuration problems."""
        errors = []
        if not self.serper_api_keys:
            errors.append("SERPER_API_KEYS (or SERPER_API_KEY) is not set")
        if self.max_iterations < 1:
            errors.append("MAX_ITERATIONS must be at least 1")
        if self.concurrency < 1:
            errors.append("CONCURRENCY must be at least 1")
        return errors


settings = Settings()
