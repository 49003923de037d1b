"""
Credential sources for model providers.

The agent loop never reads secrets from ambient state; a CredentialSource is
injected at construction and queried per provider name at every planning step.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Dict, Optional

from dotenv import load_dotenv, set_key, unset_key

logger = logging.getLogger(__name__)


def _secret_env_name(name: str) -> str:
    """Environment variable holding a provider's secret, e.g. ANTHROPIC_CREDENTIALS."""
    slug = re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_").upper()
    return f"{slug}_CREDENTIALS"


class CredentialSource(ABC):
    """Read-only view of provider secrets."""

    @abstractmethod
    def get_secret(self, name: str) -> Optional[str]:
        """Return the secret for a provider name, or None when absent."""


class StaticCredentials(CredentialSource):
    """In-memory credentials, e.g. handed over by an embedding application."""

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self._secrets = dict(secrets or {})

    def get_secret(self, name: str) -> Optional[str]:
        return self._secrets.get(name) or None


class EnvVault(CredentialSource):
    """
    Vault backed by the process environment and a .env file.

    Secrets are stored as ``<PROVIDER>_CREDENTIALS``. For Bedrock providers the
    value is ``access_key_id:secret_access_key[:session_token]``.
    """

    def __init__(self, env_path: str = ".env"):
        self.env_path = env_path

    def get_secret(self, name: str) -> Optional[str]:
        load_dotenv(self.env_path, override=False)
        value = os.getenv(_secret_env_name(name), "")
        return value.strip() or None

    def save_secret(self, name: str, value: str) -> bool:
        key = _secret_env_name(name)
        try:
            set_key(self.env_path, key, value)
            os.environ[key] = value
            logger.info(f"Stored credentials for {name}")
            return True
        except OSError as e:
            logger.error(f"Failed to store credentials for {name}: {e}")
            return False

    def delete_secret(self, name: str) -> bool:
        key = _secret_env_name(name)
        os.environ.pop(key, None)
        if not os.path.exists(self.env_path):
            return False
        removed, _ = unset_key(self.env_path, key)
        return bool(removed)
