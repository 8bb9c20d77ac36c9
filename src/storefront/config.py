"""Runtime settings for storefront, read from the environment."""

import os
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigurationError

# Can be overridden via STOREFRONT_DATA_DIR environment variable
_default_data_dir = Path(__file__).parent.parent.parent / "data"

PAYPAL_SANDBOX_URL = "https://api-m.sandbox.paypal.com"
PAYPAL_LIVE_URL = "https://api-m.paypal.com"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    app_url: str = "http://localhost:3000"
    identity_header: str = "X-User-Id"
    role_header: str = "X-User-Role"
    paypal_client_id: str | None = None
    paypal_client_secret: str | None = None
    paypal_environment: str = "sandbox"
    paypal_webhook_id: str | None = None
    paypal_timeout: float = 15.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from STOREFRONT_* and PAYPAL_* environment variables."""
        env = os.environ
        try:
            timeout = float(env.get("PAYPAL_TIMEOUT", "15"))
        except ValueError:
            raise ConfigurationError("PAYPAL_TIMEOUT (must be a number of seconds)")
        return cls(
            data_dir=Path(env.get("STOREFRONT_DATA_DIR", _default_data_dir)),
            app_url=env.get("STOREFRONT_APP_URL", "http://localhost:3000").rstrip("/"),
            identity_header=env.get("STOREFRONT_IDENTITY_HEADER", "X-User-Id"),
            role_header=env.get("STOREFRONT_ROLE_HEADER", "X-User-Role"),
            paypal_client_id=env.get("PAYPAL_CLIENT_ID") or None,
            paypal_client_secret=env.get("PAYPAL_CLIENT_SECRET") or None,
            paypal_environment=env.get("PAYPAL_ENVIRONMENT", "sandbox"),
            paypal_webhook_id=env.get("PAYPAL_WEBHOOK_ID") or None,
            paypal_timeout=timeout,
            log_level=env.get("STOREFRONT_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def paypal_base_url(self) -> str:
        return PAYPAL_LIVE_URL if self.paypal_environment == "live" else PAYPAL_SANDBOX_URL
