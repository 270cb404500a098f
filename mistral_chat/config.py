"""
Central configuration module for the chatbot.

This module manages the defaults that the command line can override:
- Sampling parameters and seed
- Repeat penalty window
- Hub revision
- Logging level
"""

import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


class Config:
    """Central configuration for the chatbot."""

    # Hub settings
    REVISION: str = os.getenv("REVISION", "main")

    # Sampling parameters (defaults); unset temperature means greedy decoding
    SEED: int = int(os.getenv("SEED", "299792458"))
    TEMPERATURE: Optional[float] = _optional_float("TEMPERATURE")
    TOP_P: Optional[float] = _optional_float("TOP_P")
    TOP_K: Optional[int] = _optional_int("TOP_K")

    # Repeat penalty, 1.0 means no penalty
    REPEAT_PENALTY: float = float(os.getenv("REPEAT_PENALTY", "1.1"))
    REPEAT_LAST_N: int = int(os.getenv("REPEAT_LAST_N", "64"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def summary(cls) -> dict:
        """
        Get a summary of current configuration.

        Returns:
            Dictionary with all config values
        """
        return {
            "revision": cls.REVISION,
            "seed": cls.SEED,
            "temperature": cls.TEMPERATURE,
            "top_p": cls.TOP_P,
            "top_k": cls.TOP_K,
            "repeat_penalty": cls.REPEAT_PENALTY,
            "repeat_last_n": cls.REPEAT_LAST_N,
        }


# Singleton instance
config = Config()
