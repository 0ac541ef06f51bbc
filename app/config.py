import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load .env file with explicit UTF-8 encoding
load_dotenv(encoding='utf-8')

logger = logging.getLogger(__name__)

_DEV_PRIVACY_SECRET = "dev-privacy-secret-change-me"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name) or str(default))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name) or str(default))


@dataclass(frozen=True)
class WalletSettings:
    provider: str = "stub"
    provider_url: str = "https://api.pub1.passkit.io"
    provider_api_key: str | None = None
    provider_timeout_seconds: float = 10.0

    # Rotating this changes every derived external_id.
    privacy_secret: str = _DEV_PRIVACY_SECRET

    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    retry_sweep_interval_seconds: float = 30.0
    retry_claim_ttl_seconds: float = 300.0

    retention_days: int = 2555
    dormant_days: int = 365

    @classmethod
    def from_env(cls) -> "WalletSettings":
        settings = cls(
            provider=(os.getenv("WALLET_PROVIDER") or "stub").strip().lower(),
            provider_url=os.getenv("WALLET_PROVIDER_URL") or cls.provider_url,
            provider_api_key=os.getenv("WALLET_PROVIDER_API_KEY") or None,
            provider_timeout_seconds=_env_float("WALLET_PROVIDER_TIMEOUT_SECONDS", cls.provider_timeout_seconds),
            privacy_secret=os.getenv("PRIVACY_HASH_SECRET") or _DEV_PRIVACY_SECRET,
            retry_max_attempts=_env_int("WALLET_RETRY_MAX_ATTEMPTS", cls.retry_max_attempts),
            retry_base_delay_seconds=_env_float("WALLET_RETRY_BASE_DELAY_SECONDS", cls.retry_base_delay_seconds),
            retry_max_delay_seconds=_env_float("WALLET_RETRY_MAX_DELAY_SECONDS", cls.retry_max_delay_seconds),
            retry_sweep_interval_seconds=_env_float(
                "WALLET_RETRY_SWEEP_INTERVAL_SECONDS", cls.retry_sweep_interval_seconds
            ),
            retry_claim_ttl_seconds=_env_float("WALLET_RETRY_CLAIM_TTL_SECONDS", cls.retry_claim_ttl_seconds),
            retention_days=_env_int("LGPD_RETENTION_DAYS", cls.retention_days),
            dormant_days=_env_int("LGPD_DORMANT_DAYS", cls.dormant_days),
        )

        if settings.provider not in {"stub", "http"}:
            raise ValueError("WALLET_PROVIDER must be 'stub' or 'http'")
        if settings.retry_max_attempts < 1:
            raise ValueError("WALLET_RETRY_MAX_ATTEMPTS must be >= 1")
        if settings.retry_claim_ttl_seconds <= settings.provider_timeout_seconds:
            # Claims must outlive the longest provider call.
            raise ValueError("WALLET_RETRY_CLAIM_TTL_SECONDS must be greater than WALLET_PROVIDER_TIMEOUT_SECONDS")

        if settings.privacy_secret == _DEV_PRIVACY_SECRET:
            logger.warning("PRIVACY_HASH_SECRET not set; using development secret")

        return settings
