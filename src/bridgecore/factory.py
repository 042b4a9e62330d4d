from __future__ import annotations

import logging

from bridgecore.adapters.bridge_http import BridgeHttpClient, RestReliabilityConfig
from bridgecore.config import Settings
from bridgecore.domain.models import OrderType
from bridgecore.persistence.stores import SqliteCompletedTransactionStore, SqliteSessionStore
from bridgecore.persistence.uow import UnitOfWorkFactory
from bridgecore.services.clock import Clock
from bridgecore.session import BridgeListener, BridgeSession

logger = logging.getLogger(__name__)


def build_http_client(settings: Settings) -> BridgeHttpClient:
    api_key, api_secret = settings.api_credentials()
    if not api_key or not api_secret:
        logger.warning("bridge_api_credentials_missing")
    timeout = settings.bridge_http_timeout_seconds
    return BridgeHttpClient(
        api_key=api_key,
        api_secret=api_secret,
        base_url=settings.bridge_base_url,
        reliability=RestReliabilityConfig(
            connect_timeout_seconds=min(timeout, 5.0),
            read_timeout_seconds=timeout,
            write_timeout_seconds=timeout,
        ),
    )


def build_bridge_session(
    settings: Settings,
    *,
    listener: BridgeListener | None = None,
    clock: Clock | None = None,
) -> BridgeSession:
    client = build_http_client(settings)
    factory = UnitOfWorkFactory(settings.state_db_path)
    session = BridgeSession(
        client,
        completed_store=SqliteCompletedTransactionStore(factory),
        session_store=SqliteSessionStore(factory),
        clock=clock,
        listener=listener,
        quote_validity_ms=settings.quote_validity_ms,
        countdown_interval_ms=settings.quote_countdown_interval_ms,
        recalculation_throttle_ms=settings.recalculation_throttle_ms,
        reconcile_timeout_ms=settings.reconcile_timeout_ms,
        emergency_followup_delay_ms=settings.emergency_followup_delay_ms,
        default_order_type=OrderType(settings.default_order_type),
        closers=[client.close],
    )
    logger.info(
        "bridge_session_built",
        extra={"extra": {"base_url": settings.bridge_base_url, "db_path": settings.state_db_path}},
    )
    return session
