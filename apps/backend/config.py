"""
Runtime configuration for the rewarded-ad backend and client library.

Every value is read from the environment once at import time (a local `.env`
file is loaded first if present). Client-side components take explicit config
objects whose defaults come from here, so tests can build their own.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env", override=False)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "json" if ENVIRONMENT == "production" else "text")  # "json" or "text"

# Client-side request gating
AD_PROVIDER = os.getenv("AD_PROVIDER", "simulated").lower()  # "simulated" or "network"
AD_COOLDOWN_SECONDS = _int_env("AD_COOLDOWN_SECONDS", 30)
AD_DAILY_LIMIT = _int_env("AD_DAILY_LIMIT", 10)
REWARD_TOKEN_TTL_SECONDS = _int_env("REWARD_TOKEN_TTL_SECONDS", 300)
REWARD_HISTORY_LIMIT = _int_env("REWARD_HISTORY_LIMIT", 50)
MIN_AD_AGE = _int_env("MIN_AD_AGE", 13)

# Heuristic fraud detection
FRAUD_WINDOW_SECONDS = _int_env("FRAUD_WINDOW_SECONDS", 600)
FRAUD_MAX_REWARDS = _int_env("FRAUD_MAX_REWARDS", 5)
FRAUD_MIN_INTERVAL_SECONDS = _int_env("FRAUD_MIN_INTERVAL_SECONDS", 30)

# Reward amounts
TOKEN_REWARD_BASE = _int_env("TOKEN_REWARD_BASE", 1)
TOKEN_REWARD_BONUS_CHANCE = float(os.getenv("TOKEN_REWARD_BONUS_CHANCE", "0.5"))
MAX_REWARD_AMOUNT = _int_env("MAX_REWARD_AMOUNT", 10)

# Server-side verification (SSV)
SSV_PUBLIC_KEYS_URL = os.getenv(
    "SSV_PUBLIC_KEYS_URL",
    "https://www.gstatic.com/admob/reward/verifier-keys.json",
)
SSV_KEY_CACHE_TTL_SECONDS = _int_env("SSV_KEY_CACHE_TTL_SECONDS", 24 * 60 * 60)
SSV_KEY_FETCH_TIMEOUT_SECONDS = float(os.getenv("SSV_KEY_FETCH_TIMEOUT_SECONDS", "5.0"))

# Keys trusted for the simulated provider's self-triggered callbacks.
# Leave the PEM empty in production so simulated callbacks are never accepted.
SIMULATED_SSV_KEY_ID = os.getenv("SIMULATED_SSV_KEY_ID", "simulated-1")
SIMULATED_SSV_PUBLIC_KEY_PEM = os.getenv("SIMULATED_SSV_PUBLIC_KEY_PEM", "")

# Where the client library finds the backend
REWARDS_API_BASE_URL = os.getenv("REWARDS_API_BASE_URL", "http://localhost:8000")
