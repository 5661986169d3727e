from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.core.constants import Environment


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Environment Profile
    environment: Environment = Environment.LOCAL

    # Billing - Stripe (ledger)
    stripe_secret_key: str = ""
    stripe_api_version: str = "2022-11-15"
    stripe_account_id: Optional[str] = None  # Connected account, if any
    stripe_key_prefix: str = ""  # Idempotency keys are sent as "<prefix>#<key>"

    @property
    def stripe_live_mode(self) -> bool:
        """Live keys carry a `_live_` segment (sk_live_..., rk_live_...)."""
        return "_live_" in self.stripe_secret_key

    # Org Identity Cache
    org_cache_size: int = 100

    # Catalog push concurrency (the ledger allows more in live mode)
    push_max_workers_live: int = 50
    push_max_workers_test: int = 20

    # Usage reporting
    usage_report_timeout_seconds: float = 3.0
    usage_report_max_backoff_seconds: float = 1.0

    # Simulated clocks
    clock_wait_max_backoff_seconds: float = 5.0
    stripe_dashboard_url: str = "https://dashboard.stripe.com"

    # OpenTelemetry
    otel_service_name: str = "entitle"
    otel_service_version: str = "0.1.0"

    # Axiom (exporters are only installed when a token is configured)
    axiom_token: Optional[str] = None
    axiom_dataset: Optional[str] = None

    def push_max_workers(self, live: Optional[bool] = None) -> int:
        """Worker pool size for catalog pushes."""
        if live is None:
            live = self.stripe_live_mode
        return self.push_max_workers_live if live else self.push_max_workers_test


settings = Settings()
