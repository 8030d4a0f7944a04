"""
Configuration for the Secret Santa coordinator, gateway and HTTP server
"""
from typing import Dict, Any, Optional
import os
from pathlib import Path


def _read_env_file() -> Dict[str, str]:
    """
    Read KEY=VALUE pairs from the root .env file.
    Supports both '=' and ':' separators, ignores comments and blank lines.
    """
    values: Dict[str, str] = {}
    env_path = Path(__file__).resolve().parent / ".env"
    if not env_path.exists():
        return values

    with env_path.open("r", encoding="utf-8") as env_file:
        for raw_line in env_file:
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue

            if "=" in line and (":" not in line or line.index("=") < line.index(":")):
                key, val = line.split("=", 1)
            elif ":" in line:
                key, val = line.split(":", 1)
            else:
                continue

            values[key.strip()] = val.strip().strip('"').strip("'")
    return values


_ENV_FILE = _read_env_file()


def _setting(key: str, default: Optional[str] = None) -> Optional[str]:
    """Environment variable first, then .env, then the default."""
    value = os.getenv(key)
    if value:
        return value.strip()
    return _ENV_FILE.get(key, default)


def _int_setting(key: str, default: int) -> int:
    value = _setting(key)
    return int(value) if value else default


def _optional_float_setting(key: str) -> Optional[float]:
    value = _setting(key)
    if not value or value.lower() in ("none", "off", "0"):
        return None
    return float(value)


def _bool_setting(key: str, default: bool) -> bool:
    value = _setting(key)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


# Game Configuration
SANTA_CONFIG: Dict[str, Any] = {
    # Identity allowed to generate matches and reset the pool
    "admin": _setting("SANTA_ADMIN", "admin"),

    # Identity the coordinator itself is granted decrypt-eligibility under
    "coordinator_identity": "secret-santa",

    # Game Rules
    "min_participants": _int_setting("SANTA_MIN_PARTICIPANTS", 3),

    # "shuffle" (retry with full reshuffle) or "backtrack" (closed-form fallback)
    "derangement_strategy": _setting("SANTA_STRATEGY", "shuffle"),
    "max_attempts": 100,
    "backtrack_step_budget": 10_000,

    # Drop handles and pending requests of the previous epoch on reset
    "purge_on_reset": _bool_setting("SANTA_PURGE_ON_RESET", True),

    # Seconds before an unanswered decryption request expires (None = never)
    "request_ttl": _optional_float_setting("SANTA_REQUEST_TTL"),

    # JSON snapshot file (None = keep state in memory only)
    "state_file": _setting("SANTA_STATE_FILE"),
}


# Cryptography Configuration
CRYPTO_CONFIG: Dict[str, Any] = {
    # "sealedbox" (PyNaCl) or "plain" (identity encryption, for local testing)
    "provider": _setting("SANTA_PROVIDER", "sealedbox"),

    # Passwords the coprocessor / gateway keys are derived from (Scrypt).
    # Unset means a fresh random key per process.
    "coprocessor_secret": _setting("SANTA_COPROCESSOR_SECRET"),
    "gateway_secret": _setting("SANTA_GATEWAY_SECRET"),
    "kdf_salt": b"secret-santa-fixed-salt",

    # Cleartexts travel as one 32-byte big-endian word
    "cleartext_width": 32,
}


# Server Configuration
SERVER_CONFIG: Dict[str, Any] = {
    "host": _setting("SANTA_HOST", "127.0.0.1"),
    "port": _int_setting("SANTA_PORT", 8000),
    "log_dir": _setting("SANTA_LOG_DIR", "logs"),

    # Let the in-process gateway answer requests by itself after a delay
    "auto_relay": _bool_setting("SANTA_AUTO_RELAY", True),
    "gateway_delay": float(_setting("SANTA_GATEWAY_DELAY", "2.0")),

    # Mount /gateway/fulfill (unauthenticated, local development only)
    "dev_routes": _bool_setting("SANTA_DEV_ROUTES", False),
}
