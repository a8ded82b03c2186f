from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

_FALSE_VALUES = ('0', 'false', 'no', 'off', '')


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_VALUES


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    # Toggle SQL echo (1=on, 0=off)
    echo: bool = False
    default_extensions: bool = True

    @property
    def is_memory_sqlite(self) -> bool:
        return self.database_url.startswith('sqlite') and ':memory:' in self.database_url

    def engine_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``create_async_engine`` matching these settings."""
        kwargs: Dict[str, Any] = {'echo': self.echo, 'future': True}
        if self.is_memory_sqlite:
            from sqlalchemy.pool import StaticPool

            # Shared in-memory DB across connections
            kwargs['connect_args'] = {'check_same_thread': False}
            kwargs['poolclass'] = StaticPool
        return kwargs


def load_settings(dotenv: bool = True) -> Settings:
    """Read settings from the environment, loading a ``.env`` file first when present."""
    if dotenv:
        load_dotenv()
    return Settings(
        database_url=os.getenv('BERRYORM_DATABASE_URL') or DEFAULT_DATABASE_URL,
        echo=_flag(os.getenv('BERRYORM_ECHO'), False),
        default_extensions=_flag(os.getenv('BERRYORM_DEFAULT_EXTENSIONS'), True),
    )


__all__ = ['DEFAULT_DATABASE_URL', 'Settings', 'load_settings']
