"""Central environment-driven settings for the payout service.

The process loads this once at startup. Scheduler and processor limits are
controlled by environment variables (see `.env.example`).
"""

from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "payouts"
    log_level: str = "INFO"
    database_url: str = "sqlite+pysqlite:///./vendorpay.db"
    kafka_bootstrap_servers: str = "kafka:9092"
    api_key: str = "change-me"
    gateway_url: str = "http://payment-gateway:8010"
    gateway_api_key: str = ""
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"

    payouts_enabled: bool = True
    schedule_interval: str = "weekly"
    minimum_payout_amount: int = 2_000
    payout_floor_amount: int = 1_000
    maximum_payout_amount: int = 100_000_000
    default_fee_percent: float = 5.0
    default_currency: str = "usd"
    supported_currencies: list[str] = ["usd", "eur", "gbp", "aud", "cad"]
    max_retries: int = 3
    retry_base_delay_ms: int = 3_600_000
    batch_size: int = 50
    batch_delay_ms: int = 1_000
    processing_timeout_ms: int = 300_000
    max_concurrent_processors: int = 3
    tick_interval_seconds: int = 300
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@dataclass(frozen=True)
class PayoutConfig:
    """Immutable snapshot of the knobs used by processor and dispatcher."""

    enabled: bool = True
    schedule_interval: str = "weekly"
    minimum_payout_amount: int = 2_000
    payout_floor_amount: int = 1_000
    maximum_payout_amount: int = 100_000_000
    default_fee_percent: float = 5.0
    default_currency: str = "usd"
    supported_currencies: tuple[str, ...] = ("usd", "eur", "gbp", "aud", "cad")
    max_retries: int = 3
    retry_base_delay_ms: int = 3_600_000
    batch_size: int = 50
    batch_delay_ms: int = 1_000
    processing_timeout_ms: int = 300_000
    max_concurrent_processors: int = 3
    tick_interval_seconds: int = 300

    @classmethod
    def from_settings(cls, source: CommonSettings) -> "PayoutConfig":
        return cls(
            enabled=source.payouts_enabled,
            schedule_interval=source.schedule_interval,
            minimum_payout_amount=source.minimum_payout_amount,
            payout_floor_amount=source.payout_floor_amount,
            maximum_payout_amount=source.maximum_payout_amount,
            default_fee_percent=source.default_fee_percent,
            default_currency=source.default_currency.lower(),
            supported_currencies=tuple(c.lower() for c in source.supported_currencies),
            max_retries=source.max_retries,
            retry_base_delay_ms=source.retry_base_delay_ms,
            batch_size=source.batch_size,
            batch_delay_ms=source.batch_delay_ms,
            processing_timeout_ms=source.processing_timeout_ms,
            max_concurrent_processors=source.max_concurrent_processors,
            tick_interval_seconds=source.tick_interval_seconds,
        )

    @property
    def processing_timeout_seconds(self) -> float:
        return self.processing_timeout_ms / 1000.0


settings = CommonSettings()
