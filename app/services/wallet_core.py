from __future__ import annotations

from dataclasses import dataclass

from app.config import WalletSettings
from app.services.ledger_store import LedgerStore, SessionFactory
from app.services.lgpd_service import LgpdService
from app.services.pass_lifecycle import PassLifecycleManager
from app.services.retry_queue import WalletRetryQueue
from app.services.wallet_provider import WalletProvider, build_wallet_provider


@dataclass
class WalletCore:
    settings: WalletSettings
    store: LedgerStore
    provider: WalletProvider
    lifecycle: PassLifecycleManager
    retry_queue: WalletRetryQueue
    lgpd: LgpdService

    def shutdown(self) -> None:
        self.retry_queue.shutdown()
        self.provider.close()


def build_wallet_core(
    settings: WalletSettings,
    session_factory: SessionFactory,
    *,
    provider: WalletProvider | None = None,
    autostart_retries: bool = True,
) -> WalletCore:
    store = LedgerStore(session_factory)
    provider = provider or build_wallet_provider(settings)

    lifecycle = PassLifecycleManager(
        store,
        provider,
        privacy_secret=settings.privacy_secret,
        retention_days=settings.retention_days,
        dormant_days=settings.dormant_days,
    )
    retry_queue = WalletRetryQueue(
        lifecycle.push_stamp_balance,
        max_attempts=settings.retry_max_attempts,
        base_delay_seconds=settings.retry_base_delay_seconds,
        max_delay_seconds=settings.retry_max_delay_seconds,
        sweep_interval_seconds=settings.retry_sweep_interval_seconds,
        claim_ttl_seconds=settings.retry_claim_ttl_seconds,
        autostart=autostart_retries,
    )
    lifecycle.retry_queue = retry_queue

    return WalletCore(
        settings=settings,
        store=store,
        provider=provider,
        lifecycle=lifecycle,
        retry_queue=retry_queue,
        lgpd=LgpdService(lifecycle, privacy_secret=settings.privacy_secret),
    )
