"""
Environment variable management with .env file support.

Configuration dataclasses read their values through EnvManager so that a
local .env file (loaded with python-dotenv) and the process environment
behave the same way.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


class EnvManager:
    """
    Manages environment variables for the pipeline.

    Features:
    - Loads .env files automatically
    - Boolean flags and defaults
    - Fallback names for variables inherited from older deployments

    Example:
        >>> env = EnvManager()
        >>> env.load()  # Loads .env if exists
        >>> brokers = env.get("KAFKA_BOOTSTRAP_SERVERS", fallbacks=("KAFKA_BROKERS",))
    """

    def __init__(self, project_root: Path | str | None = None, auto_load: bool = True):
        """
        Initialize the environment manager.

        Args:
            project_root: Root directory of the project (searches for .env here)
            auto_load: Automatically load .env file if found
        """
        self.project_root = Path(project_root) if project_root else Path.cwd()

        if auto_load:
            self.load()

    def load(self, env_file: str | Path | None = None, override: bool = False) -> bool:
        """
        Load environment variables from .env file.

        Args:
            env_file: Path to .env file (defaults to .env in project root)
            override: Whether to override existing environment variables

        Returns:
            True if .env file was loaded, False otherwise
        """
        if env_file is None:
            env_file = self.project_root / ".env"
        else:
            env_file = Path(env_file)

        if not env_file.exists():
            return False

        load_dotenv(env_file, override=override)
        return True

    def get(
        self,
        key: str,
        default: str | None = None,
        fallbacks: tuple[str, ...] = (),
    ) -> str | None:
        """
        Get an environment variable value.

        Empty values count as unset.

        Args:
            key: Environment variable name
            default: Default value if not found
            fallbacks: Alternative names checked in order when `key` is unset

        Returns:
            Environment variable value or default
        """
        for name in (key, *fallbacks):
            value = os.environ.get(name)
            if value:
                return value

        return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get environment variable as boolean."""
        value = (self.get(key) or "").lower()
        if value in ("true", "1", "yes", "on"):
            return True
        if value in ("false", "0", "no", "off"):
            return False
        return default


# Global instance
_global_env: EnvManager | None = None


def get_env() -> EnvManager:
    """Get the global environment manager instance."""
    global _global_env
    if _global_env is None:
        _global_env = EnvManager()
    return _global_env
