import math
import os
from dataclasses import dataclass
from typing import Dict, Any, Mapping, Optional
from pathlib import Path


class ConfigError(Exception):
    """Configuration error."""
    pass


DEFAULT_HISTORY_CAPACITY = 0.15


@dataclass(frozen=True)
class ShuffleSettings:
    """Tunables of the listening session engine."""

    history_capacity: float = DEFAULT_HISTORY_CAPACITY
    random_seed: Optional[int] = None
    log_level: str = 'INFO'
    log_file: Optional[str] = None


def _parse_number(env: Mapping[str, str], key: str, kind, default):
    raw = env.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a {kind.__name__}, got {raw!r}")


def load_shuffle_settings(env: Optional[Mapping[str, str]] = None) -> ShuffleSettings:
    """Read engine settings from ``MSHUFFLE_*`` environment variables."""
    env = os.environ if env is None else env

    capacity = _parse_number(env, 'MSHUFFLE_HISTORY_CAPACITY', float, DEFAULT_HISTORY_CAPACITY)
    if not math.isfinite(capacity) or capacity < 0:
        raise ConfigError("MSHUFFLE_HISTORY_CAPACITY must be a finite, non-negative number")

    level = env.get('MSHUFFLE_LOG_LEVEL', 'INFO').upper()
    if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR'):
        raise ConfigError(f"Unsupported MSHUFFLE_LOG_LEVEL {level!r}")

    return ShuffleSettings(
        history_capacity=capacity,
        random_seed=_parse_number(env, 'MSHUFFLE_RANDOM_SEED', int, None),
        log_level=level,
        log_file=env.get('MSHUFFLE_LOG_FILE') or None,
    )


class SecretManager:
    """Manages Spotify client secrets and configuration."""

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize secret manager."""
        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.mshuffle'
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.env_file = self.config_dir / '.env'

    def get_spotify_scopes(self) -> list:
        """Get minimal required Spotify scopes."""
        return [
            'user-read-private',            # Read profile for /user-info
            'playlist-read-private',        # Read private playlists
            'playlist-read-collaborative',  # Read collaborative playlists
        ]

    def get_spotify_scope_string(self) -> str:
        """Get Spotify scopes as space-separated string."""
        return ' '.join(self.get_spotify_scopes())

    def validate_spotify_scopes(self, scopes: str) -> bool:
        """Validate that provided scopes include all required ones."""
        provided_scopes = set(scopes.split())
        required_scopes = set(self.get_spotify_scopes())

        return required_scopes.issubset(provided_scopes)

    def get_missing_spotify_scopes(self, scopes: str) -> list:
        """Get list of missing required Spotify scopes."""
        provided_scopes = set(scopes.split())
        required_scopes = set(self.get_spotify_scopes())

        return list(required_scopes - provided_scopes)

    def load_env_vars(self) -> Dict[str, str]:
        """Load environment variables from .env file, falling back to the process environment."""
        env_vars = {
            key: value for key, value in os.environ.items() if key.startswith('SPOTIFY_')
        }

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
        """Save environment variables to .env file."""
        try:
            with open(self.env_file, 'w') as f:
                for key, value in env_vars.items():
                    f.write(f"{key}={value}\n")
        except IOError as e:
            raise ConfigError(f"Failed to save .env file {self.env_file}: {e}")

    def get_spotify_client_config(self) -> Dict[str, str]:
        """Get Spotify client configuration from environment."""
        env_vars = self.load_env_vars()

        client_id = env_vars.get('SPOTIFY_CLIENT_ID')
        client_secret = env_vars.get('SPOTIFY_CLIENT_SECRET')
        redirect_uri = env_vars.get('SPOTIFY_REDIRECT_URI')

        if not client_id:
            raise ConfigError("SPOTIFY_CLIENT_ID not found in environment")
        if not client_secret:
            raise ConfigError("SPOTIFY_CLIENT_SECRET not found in environment")
        if not redirect_uri:
            raise ConfigError("SPOTIFY_REDIRECT_URI not found in environment")

        return {
            'client_id': client_id,
            'client_secret': client_secret,
            'redirect_uri': redirect_uri
        }

    def validate_configuration(self) -> Dict[str, bool]:
        """Validate that all required configuration is present."""
        env_vars = self.load_env_vars()
        return {
            'spotify_client_id': bool(env_vars.get('SPOTIFY_CLIENT_ID')),
            'spotify_client_secret': bool(env_vars.get('SPOTIFY_CLIENT_SECRET')),
            'spotify_redirect_uri': bool(env_vars.get('SPOTIFY_REDIRECT_URI')),
        }

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        return {
            'config_dir': str(self.config_dir),
            'env_file': str(self.env_file),
            'validation': self.validate_configuration(),
            'spotify_scopes': self.get_spotify_scopes(),
        }

    def clear_env_vars(self) -> None:
        """Clear .env file."""
        if self.env_file.exists():
            self.env_file.unlink()
