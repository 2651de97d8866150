"""
Runtime configuration read from the environment.

Values may come from the process environment or from a .env file loaded by
the entrypoint before Settings.from_env() is called.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from src.warehouse.client import ClientConfig
from src.warehouse.errors import StartupConfigurationError

SERVER_NAME = "bigquery-mcp-server"
SERVER_VERSION = "0.1.0"

CREDENTIALS_ENV = "GOOGLE_APPLICATION_CREDENTIALS"


@dataclass
class Settings:
    """Process-wide settings for the bridge."""
    credentials_path: str
    project_id: Optional[str] = None
    location: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Read settings from the environment.

        Args:
            environ: Mapping to read from (default: os.environ)

        Raises:
            StartupConfigurationError: If the credential reference is missing
        """
        env = os.environ if environ is None else environ

        credentials_path = env.get(CREDENTIALS_ENV)
        if not credentials_path:
            raise StartupConfigurationError(
                f"{CREDENTIALS_ENV} environment variable is not set.",
                variable=CREDENTIALS_ENV,
            )

        return cls(
            credentials_path=credentials_path,
            project_id=env.get("BIGQUERY_PROJECT_ID") or env.get("GOOGLE_CLOUD_PROJECT") or None,
            location=env.get("BIGQUERY_LOCATION") or None,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )

    def client_config(self) -> ClientConfig:
        """Return the configuration injected into the BigQuery adapter."""
        return ClientConfig(
            credentials_path=self.credentials_path,
            project_id=self.project_id,
            location=self.location,
        )
