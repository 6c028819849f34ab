"""Docker secrets support for credentials"""

import logging
import os
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)

SECRETS_DIR = Path("/run/secrets")


def load_secret(
    secret_name: str,
    default: Optional[str] = None,
    secrets_dir: Path = SECRETS_DIR,
) -> Optional[str]:
    """Load a secret from a mounted secret file or the environment.

    Checks ``<secrets_dir>/<secret_name lowercased>`` first, then the
    environment variable, then falls back to ``default``. Blank values count
    as unset.

    Args:
        secret_name: Name of the secret/environment variable
        default: Default value if secret not found
        secrets_dir: Directory holding secret files

    Returns:
        Secret value or default
    """
    secret_path = secrets_dir / secret_name.lower()
    if secret_path.is_file():
        try:
            value = secret_path.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.warning("Could not read secret file %s: %s", secret_path, e)
        else:
            if value:
                return value

    value = os.getenv(secret_name, "").strip()
    return value or default
