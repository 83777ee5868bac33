import os
import json
from typing import Dict, Any, Optional
from pathlib import Path


class ConfigError(Exception):
    """Configuration error."""
    pass


class SecretManager:
    """Manages application secrets and configuration."""

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize secret manager."""
        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.whiplash'
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.tokens_file = self.config_dir / 'tokens.json'
        self.env_file = self.config_dir / '.env'

    def get_spotify_scopes(self) -> list:
        """Get the read-only Spotify scopes a library scan needs."""
        return [
            'playlist-read-private',        # Read private playlists
            'playlist-read-collaborative',  # Read collaborative playlists
        ]

    def get_spotify_scope_string(self) -> str:
        return ' '.join(self.get_spotify_scopes())

    def validate_spotify_scopes(self, scopes: str) -> bool:
        """Validate that provided scopes include all required ones."""
        provided_scopes = set(scopes.split())
        required_scopes = set(self.get_spotify_scopes())

        return required_scopes.issubset(provided_scopes)

    def get_missing_spotify_scopes(self, scopes: str) -> list:
        provided_scopes = set(scopes.split())
        required_scopes = set(self.get_spotify_scopes())

        return list(required_scopes - provided_scopes)

    def load_tokens(self) -> Dict[str, Any]:
        """Load tokens from tokens.json file."""
        if not self.tokens_file.exists():
            return {}

        try:
            with open(self.tokens_file, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load tokens from {self.tokens_file}: {e}")

    def save_tokens(self, tokens: Dict[str, Any]) -> None:
        """Merge tokens into tokens.json."""
        existing_tokens = self.load_tokens()
        existing_tokens.update(tokens)

        try:
            with open(self.tokens_file, 'w') as f:
                json.dump(existing_tokens, f, indent=2, ensure_ascii=False)
        except IOError as e:
            raise ConfigError(f"Failed to save tokens to {self.tokens_file}: {e}")

    def get_spotify_tokens(self) -> Optional[Dict[str, Any]]:
        tokens = self.load_tokens()
        return tokens.get('spotify')

    def save_spotify_tokens(self, access_token: str, refresh_token: Optional[str] = None,
                            expires_at: Optional[float] = None) -> None:
        entry: Dict[str, Any] = {'access_token': access_token}
        if refresh_token:
            entry['refresh_token'] = refresh_token
        if expires_at is not None:
            entry['expires_at'] = expires_at
        self.save_tokens({'spotify': entry})

    def load_env_vars(self) -> Dict[str, str]:
        """Load environment variables from .env file."""
        env_vars = {}

        if self.env_file.exists():
            try:
                with open(self.env_file, 'r') as f:
                    for line in f:
                        line = line.strip()
                        if line and not line.startswith('#') and '=' in line:
                            key, value = line.split('=', 1)
                            env_vars[key.strip()] = value.strip()
            except IOError as e:
                raise ConfigError(f"Failed to load .env file {self.env_file}: {e}")

        return env_vars

    def save_env_vars(self, env_vars: Dict[str, str]) -> None:
        try:
            with open(self.env_file, 'w') as f:
                for key, value in env_vars.items():
                    f.write(f"{key}={value}\n")
        except IOError as e:
            raise ConfigError(f"Failed to save .env file {self.env_file}: {e}")

    def _lookup(self, key: str, env_vars: Optional[Dict[str, str]] = None) -> Optional[str]:
        """Process environment wins over the config-dir .env file."""
        value = os.getenv(key)
        if value:
            return value
        if env_vars is None:
            env_vars = self.load_env_vars()
        return env_vars.get(key) or None

    def get_spotify_client_config(self) -> Dict[str, Optional[str]]:
        """Get Spotify client configuration.

        The redirect URI is optional; the HTTP interface derives one from the
        incoming request when it is not configured.
        """
        env_vars = self.load_env_vars()

        client_id = self._lookup('SPOTIFY_CLIENT_ID', env_vars)
        client_secret = self._lookup('SPOTIFY_CLIENT_SECRET', env_vars)

        if not client_id:
            raise ConfigError("SPOTIFY_CLIENT_ID not found in environment")
        if not client_secret:
            raise ConfigError("SPOTIFY_CLIENT_SECRET not found in environment")

        return {
            'client_id': client_id,
            'client_secret': client_secret,
            'redirect_uri': self._lookup('SPOTIFY_REDIRECT_URI', env_vars),
        }

    def get_int(self, key: str, default: int) -> int:
        """Read an integer knob such as WHIPLASH_FETCH_WORKERS."""
        raw = self._lookup(key)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{key} must be an integer, got {raw!r}")

    def validate_configuration(self) -> Dict[str, bool]:
        """Validate that all required configuration is present."""
        env_vars = self.load_env_vars()
        spotify_tokens = self.get_spotify_tokens()

        return {
            'spotify_client_id': bool(self._lookup('SPOTIFY_CLIENT_ID', env_vars)),
            'spotify_client_secret': bool(self._lookup('SPOTIFY_CLIENT_SECRET', env_vars)),
            'spotify_redirect_uri': bool(self._lookup('SPOTIFY_REDIRECT_URI', env_vars)),
            'spotify_tokens': bool(spotify_tokens and spotify_tokens.get('access_token')),
        }

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        validation = self.validate_configuration()

        return {
            'config_dir': str(self.config_dir),
            'tokens_file': str(self.tokens_file),
            'env_file': str(self.env_file),
            'validation': validation,
            'spotify_scopes': self.get_spotify_scopes(),
            'has_spotify_tokens': validation['spotify_tokens'],
        }


secret_manager: Optional[SecretManager] = None


def get_secret_manager() -> SecretManager:
    """Get global secret manager instance, creating it on first use."""
    global secret_manager
    if secret_manager is None:
        secret_manager = SecretManager(os.getenv('WHIPLASH_CONFIG_DIR'))
    return secret_manager


def setup_config(config_dir: Optional[str] = None) -> SecretManager:
    """Setup configuration with custom directory."""
    global secret_manager
    secret_manager = SecretManager(config_dir)
    return secret_manager
