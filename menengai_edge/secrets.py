"""
Secret loading for hosted-backend credentials

Resolution order for a secret named ``supabase_anon_key``:
1. /run/secrets/supabase_anon_key (Docker / Kubernetes mounted secret)
2. File path in SUPABASE_ANON_KEY_FILE
3. SUPABASE_ANON_KEY environment variable
4. The supplied default

Secret values are never logged, only the source they came from.
"""
import os
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger()

SECRETS_DIR = Path("/run/secrets")


def load_secret(
    secret_name: str,
    default: Optional[str] = None,
    required: bool = False
) -> Optional[str]:
    """
    Load a secret from a mounted file, a *_FILE pointer, or the environment

    Args:
        secret_name: Name of the secret (e.g., "supabase_jwt_secret")
        default: Value returned when no source provides the secret
        required: Raise ValueError instead of returning None when missing

    Raises:
        ValueError: If required=True and the secret is missing with no default
        FileNotFoundError: If the *_FILE variable points to a missing file
    """
    name = secret_name.lower().replace("-", "_")
    env_name = name.upper()

    mounted = SECRETS_DIR / name
    if mounted.is_file():
        try:
            value = mounted.read_text().strip()
            logger.debug("secret_loaded", secret_name=name, source="mounted_file")
            return value
        except OSError as e:
            logger.error("secret_read_error", secret_name=name, path=str(mounted), error=str(e))

    file_pointer = os.getenv(f"{env_name}_FILE")
    if file_pointer:
        path = Path(file_pointer)
        if not path.is_file():
            raise FileNotFoundError(
                f"Secret file specified by {env_name}_FILE={file_pointer} does not exist"
            )
        logger.debug("secret_loaded", secret_name=name, source="env_file")
        return path.read_text().strip()

    env_value = os.getenv(env_name)
    if env_value:
        logger.debug("secret_loaded", secret_name=name, source="env_var")
        return env_value

    if default is not None:
        return default

    if required:
        raise ValueError(
            f"Required secret '{name}' not found. "
            f"Checked: {mounted}, {env_name}_FILE, {env_name}"
        )
    return None


def validate_secret_strength(
    secret_value: str,
    min_length: int = 32,
    secret_name: str = "secret"
) -> bool:
    """
    Reject secrets that are too short to sign tokens safely

    Raises:
        ValueError: If the secret is shorter than min_length
    """
    if len(secret_value) < min_length:
        raise ValueError(
            f"Secret '{secret_name}' is too short "
            f"({len(secret_value)} chars, minimum {min_length})"
        )
    return True
