"""
Runtime configuration read from environment variables.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    database_url: str = "sqlite:///ledger.db"
    environment: str = "dev"
    log_level: str = "INFO"
    gateway_key_secret: str | None = None
    port: int = 8080
    history_limit_max: int = 200

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get("DATABASE_URL", cls.database_url),
            environment=env.get("ENVIRONMENT", cls.environment),
            log_level=env.get("LOG_LEVEL", cls.log_level).upper(),
            gateway_key_secret=env.get("GATEWAY_KEY_SECRET") or None,
            port=int(env.get("PORT", cls.port)),
            history_limit_max=int(env.get("HISTORY_LIMIT_MAX", cls.history_limit_max)),
        )
