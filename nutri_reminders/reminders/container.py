"""
Wiring of the scheduler's collaborators from ``ReminderSettings``.

Each process builds one container: the API, the standalone worker and the
Celery worker all share the same construction path.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple
import logging
import threading

import redis
from sqlalchemy.engine import Engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker

from nutri_reminders.db.session import build_engine, create_session_factory, init_db
from nutri_reminders.utils.wallclock import now_local
from .agent import ReminderAgent
from .config import ReminderSettings, settings as default_settings
from .dispatcher import DeliverySink, FcmSink, LoggingSink
from .notifier import (
    CeleryWakeChannel,
    InProcessWakeChannel,
    NullWakeChannel,
    RedisWakeChannel,
    RedisWakeListener,
    WakeChannel,
)
from .reconciler import Reconciler
from .repository import ReminderStore

logger = logging.getLogger(__name__)


@dataclass
class ReminderContainer:
    settings: ReminderSettings
    engine: Optional[Engine]
    store: ReminderStore
    sink: DeliverySink
    agent: ReminderAgent
    wake_channel: WakeChannel
    reconciler: Reconciler
    wake_listener: Optional[RedisWakeListener] = None

    @property
    def embedded_agent(self) -> bool:
        return isinstance(self.wake_channel, InProcessWakeChannel)

    def shutdown(self) -> None:
        if self.wake_listener is not None:
            self.wake_listener.stop()
        self.agent.stop()
        if self.engine is not None:
            self.engine.dispose()


def build_sink(cfg: ReminderSettings) -> DeliverySink:
    if cfg.DELIVERY_SINK == "fcm":
        return FcmSink(project_id=cfg.FCM_PROJECT_ID, credentials_json=cfg.FCM_CREDENTIALS_JSON)
    return LoggingSink()


def build_wake_channel(cfg: ReminderSettings, agent: ReminderAgent) -> WakeChannel:
    if cfg.WAKE_CHANNEL == "redis":
        return RedisWakeChannel(redis.Redis.from_url(cfg.REDIS_URL), cfg.REDIS_WAKE_CHANNEL)
    if cfg.WAKE_CHANNEL == "celery":
        from .celery_app import celery_app
        return CeleryWakeChannel(celery_app, queue=cfg.CELERY_QUEUE)
    if cfg.EMBEDDED_AGENT:
        return InProcessWakeChannel(agent)
    return NullWakeChannel()


def _open_store(cfg: ReminderSettings) -> Tuple[Optional[Engine], Optional[sessionmaker]]:
    engine = build_engine(cfg.DATABASE_URL, echo=cfg.SQL_ECHO)
    try:
        init_db(engine)
    except (OperationalError, InterfaceError) as e:
        # Keep the engine: the store reports StorageUnavailable until the DB is back
        logger.error(f"❌ [Container] Could not initialize reminder tables: {e}")
    return engine, create_session_factory(engine)


def build_container(
    cfg: Optional[ReminderSettings] = None,
    session_factory: Optional[sessionmaker] = None,
    sink: Optional[DeliverySink] = None,
    wake_channel: Optional[WakeChannel] = None,
    clock: Callable[[], datetime] = now_local,
) -> ReminderContainer:
    """Build every collaborator; explicit arguments override the settings."""
    cfg = cfg or default_settings
    engine = None
    if session_factory is None:
        engine, session_factory = _open_store(cfg)

    store = ReminderStore(session_factory)
    tolerance = timedelta(seconds=cfg.INTERVAL_SNAP_TOLERANCE_SECONDS)
    grace = timedelta(minutes=cfg.OVERDUE_GRACE_MINUTES) if cfg.OVERDUE_GRACE_MINUTES is not None else None
    sink = sink or build_sink(cfg)

    agent = ReminderAgent(
        store,
        sink,
        clock=clock,
        scan_interval_seconds=cfg.SCAN_INTERVAL_SECONDS,
        delivery_timeout=cfg.DELIVERY_TIMEOUT_SECONDS,
        delivery_workers=cfg.DELIVERY_WORKERS,
        overdue_grace=grace,
        batch_size=cfg.SCAN_BATCH_SIZE,
        tolerance=tolerance,
    )
    wake_channel = wake_channel or build_wake_channel(cfg, agent)
    reconciler = Reconciler(
        store,
        notifier=wake_channel,
        clock=clock,
        settle_seconds=cfg.RECONCILE_SETTLE_SECONDS,
        retry_settle_seconds=cfg.RECONCILE_RETRY_SETTLE_SECONDS,
        tolerance=tolerance,
    )
    logger.info(
        f"🔧 [Container] store={'ok' if store.available else 'missing'} sink={sink.name} "
        f"wake={wake_channel.name}"
    )
    return ReminderContainer(
        settings=cfg,
        engine=engine,
        store=store,
        sink=sink,
        agent=agent,
        wake_channel=wake_channel,
        reconciler=reconciler,
    )


_container: Optional[ReminderContainer] = None
_container_lock = threading.Lock()


def get_container() -> ReminderContainer:
    """Process-wide container, built on first use."""
    global _container
    with _container_lock:
        if _container is None:
            _container = build_container()
        return _container
