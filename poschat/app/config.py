#!/usr/bin/env python3
"""
Configuration management for the POS chat backend.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class ConfigurationError(ValueError):
    """A value that must be configured is missing or invalid."""


def _float(name):
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else None


def _int(name, default=None):
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


class Config:
    """Configuration class for the application."""

    # Language model (OpenAI-compatible chat completions)
    LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY")
    LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1/chat/completions")
    LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o")
    LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", 0.3))
    LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", 1000))
    LLM_RATE_LIMIT_RETRIES = int(os.getenv("LLM_RATE_LIMIT_RETRIES", 2))
    LLM_TIMEOUT_SECONDS = _float("LLM_TIMEOUT_SECONDS")

    # Transaction kernel
    KERNEL_MODE = os.getenv("KERNEL_MODE", "simulated").lower()
    KERNEL_BASE_URL = os.getenv("KERNEL_BASE_URL", "http://localhost:8080/api")
    KERNEL_TIMEOUT_SECONDS = float(os.getenv("KERNEL_TIMEOUT_SECONDS", 10))
    TERMINAL_ID = os.getenv("TERMINAL_ID", "AI_TERMINAL")
    OPERATOR_ID = os.getenv("OPERATOR_ID", "AI_ASSISTANT")

    # Store identity
    STORE_NAME = os.getenv("STORE_NAME", "Toast Boleh")
    STORE_TYPE = os.getenv("STORE_TYPE", "kopitiam").lower()
    STORE_CULTURE = os.getenv("STORE_CULTURE", "en-SG")
    STORE_CURRENCY = os.getenv("STORE_CURRENCY")
    PERSONALITY = os.getenv("PERSONALITY", "kopitiam_uncle")
    STAFF_TITLE = os.getenv("STAFF_TITLE", "Uncle")

    # Inference policy
    AUTO_ADD_CONFIDENCE = _float("AUTO_ADD_CONFIDENCE")
    HIGH_CONFIDENCE = _float("HIGH_CONFIDENCE")
    MAX_INFERENCE_ATTEMPTS = _int("MAX_INFERENCE_ATTEMPTS")

    # Conversation
    DISAMBIGUATION_TIMEOUT_MINUTES = float(os.getenv("DISAMBIGUATION_TIMEOUT_MINUTES", 5))
    AUTO_CLEAR_SECONDS = _float("AUTO_CLEAR_SECONDS")
    RECENT_HISTORY_TURNS = int(os.getenv("RECENT_HISTORY_TURNS", 3))
    THOUGHT_FLUSH_INTERVAL_SECONDS = float(os.getenv("THOUGHT_FLUSH_INTERVAL_SECONDS", 0.1))

    # Redis Configuration
    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
    REDIS_DB = int(os.getenv("REDIS_DB", 0))
    MAX_CONVERSATION_TURNS = int(os.getenv("MAX_CONVERSATION_TURNS", 14))

    # Product catalog
    DATABASE_URL = os.getenv("DATABASE_URL")

    REQUIRED = (
        "LLM_TIMEOUT_SECONDS",
        "AUTO_ADD_CONFIDENCE",
        "HIGH_CONFIDENCE",
        "MAX_INFERENCE_ATTEMPTS",
        "STORE_CURRENCY",
    )

    @classmethod
    def require(cls, name: str):
        """Return a configured value or fail with a design-deficiency error."""
        value = getattr(cls, name, None)
        if value is None or value == "":
            raise ConfigurationError(
                f"DESIGN DEFICIENCY: {name} is not configured. "
                f"Set {name} in the environment or .env file; no built-in default is used."
            )
        return value

    @classmethod
    def validate(cls, require_llm_key: bool = True):
        """Validate that all required configuration is present."""
        missing = [name for name in cls.REQUIRED if getattr(cls, name, None) in (None, "")]
        if require_llm_key and not cls.LLM_API_KEY:
            missing.append("LLM_API_KEY")
        if missing:
            raise ConfigurationError(f"DESIGN DEFICIENCY: Missing required configuration: {', '.join(missing)}")

        if not 0.0 <= cls.AUTO_ADD_CONFIDENCE <= cls.HIGH_CONFIDENCE <= 1.0:
            raise ConfigurationError(
                "DESIGN DEFICIENCY: expected 0 <= AUTO_ADD_CONFIDENCE <= HIGH_CONFIDENCE <= 1, "
                f"got {cls.AUTO_ADD_CONFIDENCE} and {cls.HIGH_CONFIDENCE}"
            )
        if cls.MAX_INFERENCE_ATTEMPTS < 1:
            raise ConfigurationError("DESIGN DEFICIENCY: MAX_INFERENCE_ATTEMPTS must be at least 1")
        if cls.KERNEL_MODE not in ("simulated", "http"):
            raise ConfigurationError(f"DESIGN DEFICIENCY: unknown KERNEL_MODE '{cls.KERNEL_MODE}'")

        return True
