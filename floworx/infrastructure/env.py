"""
Environment loading for FloWorx scripts and the API server.

Call ensure_env_loaded() before reading credentials such as N8N_API_KEY or
FLOWORX_ENCRYPTION_KEY.

Side Effects:
    - Loads the nearest .env file found walking up from this package
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

_ENV_LOADED = False


def ensure_env_loaded(env_path: Path | None = None) -> None:
    """
    Load the .env file exactly once.

    Args:
        env_path: Explicit .env path. When None, parent directories are searched.

    Side Effects:
        - Populates os.environ (existing variables are not overridden)
        - Sets module-level _ENV_LOADED flag
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    if env_path is None:
        current = Path(__file__).parent
        while current != current.parent:
            candidate = current / ".env"
            if candidate.exists():
                env_path = candidate
                break
            current = current.parent

    if env_path and env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()
    _ENV_LOADED = True


def get_required_env(key: str, error_msg: str | None = None) -> str:
    """
    Return a required environment variable or exit with guidance.

    Raises:
        SystemExit: If the variable is unset or empty
    """
    ensure_env_loaded()
    value = os.getenv(key)
    if not value:
        print(f"❌ {error_msg or key + ' not found in environment'}", file=sys.stderr)
        if not error_msg:
            print("   Add it to the project .env file (see .env.example)", file=sys.stderr)
        sys.exit(1)
    return value


def get_optional_env(key: str, default: str = "") -> str:
    ensure_env_loaded()
    return os.getenv(key, default)
