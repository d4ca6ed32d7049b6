"""
Application settings

Everything is read from the environment. There is no default connection
string: DATABASE_URL must be set or startup fails.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _parse_active_default(value: str) -> Optional[bool]:
    value = value.strip().lower()
    if value in ("", "all", "none"):
        return None
    if value == "true":
        return True
    if value == "false":
        return False
    raise ValueError(f"USERS_ACTIVE_DEFAULT must be true, false or all, got {value!r}")


@dataclass
class Settings:
    database_url: str
    database_name: str = "api"
    port: int = 3000
    log_level: str = "INFO"
    # Filter applied to GET /api/usuarios when ?active= is absent.
    # None lists every user.
    users_active_default: Optional[bool] = True

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL is not set")
        return cls(
            database_url=database_url,
            database_name=os.getenv("DATABASE_NAME", "api"),
            port=int(os.getenv("PORT", 3000)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            users_active_default=_parse_active_default(os.getenv("USERS_ACTIVE_DEFAULT", "true")),
        )
