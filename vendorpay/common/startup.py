"""Startup-time helpers for safe config logging."""

from dataclasses import asdict

from vendorpay.common.config import CommonSettings, PayoutConfig
from vendorpay.common.logging import logger


SECRET_MARKERS = ("key", "secret", "password", "token", "dsn", "database_url")


def redact_settings(source: CommonSettings) -> dict:
    """Settings as a dict with secret-like fields masked."""

    redacted = {}
    for name, value in source.model_dump().items():
        if any(marker in name for marker in SECRET_MARKERS):
            redacted[name] = "<redacted>" if value else "<unset>"
        else:
            redacted[name] = value
    return redacted


def log_startup_config(source: CommonSettings, payout_config: PayoutConfig) -> dict:
    """Log resolved settings and the payout limits the scheduler will run with."""

    config = {"settings": redact_settings(source), "payouts": asdict(payout_config)}
    logger.info(
        "startup_config service=%s scheduler_enabled=%s interval=%s config=%s",
        source.service_name,
        payout_config.enabled,
        payout_config.schedule_interval,
        config,
    )
    return config
