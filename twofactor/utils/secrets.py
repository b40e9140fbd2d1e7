"""
Secrets management utilities.

Supports multiple secret sources:
1. Environment variables (development)
2. Docker secrets files (production)

Usage:
    from twofactor.utils.secrets import get_secret

    # Automatically checks SECRET_FILE env var, then SECRET env var
    key = get_secret("MFA_ENCRYPTION_KEY")
"""
import os
import logging
from typing import Optional
from functools import lru_cache

logger = logging.getLogger(__name__)


@lru_cache(maxsize=32)
def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Get a secret value from various sources.

    Priority:
    1. {NAME}_FILE environment variable (path to file containing secret)
    2. {NAME} environment variable (direct value)
    3. /run/secrets/{name.lower()} file (Docker secrets default path)
    4. Default value

    Args:
        name: Secret name (e.g., "MFA_ENCRYPTION_KEY")
        default: Default value if secret not found

    Returns:
        Secret value or default
    """
    # 1. Check for _FILE variant (Docker secrets pattern)
    file_path = os.environ.get(f"{name}_FILE")

    if file_path and os.path.isfile(file_path):
        try:
            with open(file_path, 'r') as f:
                secret = f.read().strip()
                logger.debug(f"Loaded secret {name} from file")
                return secret
        except OSError as e:
            logger.warning(f"Failed to read secret file {file_path}: {e}")

    # 2. Check direct environment variable
    env_value = os.environ.get(name)
    if env_value:
        logger.debug(f"Loaded secret {name} from environment")
        return env_value

    # 3. Check Docker secrets default path
    docker_secret_path = f"/run/secrets/{name.lower()}"
    if os.path.isfile(docker_secret_path):
        try:
            with open(docker_secret_path, 'r') as f:
                secret = f.read().strip()
                logger.debug(f"Loaded secret {name} from Docker secrets")
                return secret
        except OSError as e:
            logger.warning(f"Failed to read Docker secret {docker_secret_path}: {e}")

    if default is None:
        logger.warning(f"Secret {name} not found, no default provided")
    return default


def get_database_url() -> str:
    """Build the database URL from DATABASE_URL or POSTGRES_* variables."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "twofactor")
    user = os.getenv("POSTGRES_USER", "twofactor_user")
    password = get_secret("POSTGRES_PASSWORD", "")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def mask_secret(secret: str, visible_chars: int = 4) -> str:
    """
    Mask a secret for safe logging.

    Args:
        secret: The secret to mask
        visible_chars: Number of characters to show at start and end

    Returns:
        Masked string like "abc...xyz"
    """
    if not secret or len(secret) <= visible_chars * 2:
        return "***"
    return f"{secret[:visible_chars]}...{secret[-visible_chars:]}"
