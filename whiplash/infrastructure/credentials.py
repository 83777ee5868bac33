import os
import logging
from typing import Iterable, Optional

from whiplash.crosscutting.config import ConfigError, SecretManager, get_secret_manager
from whiplash.domain.ports import CredentialProvider

logger = logging.getLogger(__name__)


class StaticCredentials(CredentialProvider):
    """Wraps an already-known token, e.g. one read from a session cookie."""

    def __init__(self, token: Optional[str]):
        self._token = token

    def get_access_token(self) -> Optional[str]:
        return self._token or None


class EnvCredentials(CredentialProvider):
    """Reads the token from SPOTIFY_ACCESS_TOKEN."""

    def __init__(self, env_var: str = 'SPOTIFY_ACCESS_TOKEN'):
        self.env_var = env_var

    def get_access_token(self) -> Optional[str]:
        value = os.getenv(self.env_var)
        if value is None or not str(value).strip():
            return None
        return value.strip()


class TokenFileCredentials(CredentialProvider):
    """Reads the token saved by the OAuth callback in tokens.json."""

    def __init__(self, secret_manager: Optional[SecretManager] = None):
        self.secret_manager = secret_manager or get_secret_manager()

    def get_access_token(self) -> Optional[str]:
        try:
            tokens = self.secret_manager.get_spotify_tokens()
        except ConfigError as e:
            logger.warning(f"Ignoring unreadable tokens file: {e}")
            return None
        if not tokens:
            return None
        return tokens.get('access_token') or None


class ChainedCredentials(CredentialProvider):
    """Returns the first token found among several providers."""

    def __init__(self, providers: Iterable[CredentialProvider]):
        self.providers = list(providers)

    def get_access_token(self) -> Optional[str]:
        for provider in self.providers:
            token = provider.get_access_token()
            if token:
                return token
        return None


def default_credentials(secret_manager: Optional[SecretManager] = None) -> CredentialProvider:
    """Environment first, then the saved tokens file."""
    return ChainedCredentials([EnvCredentials(), TokenFileCredentials(secret_manager)])
