"""
Wake channels: tell a possibly separate delivery agent that an owner's
reminder set changed so it scans now instead of at its next timer tick.

Every channel is best effort. The agent's periodic timer stays the
authoritative fallback, so a lost signal only delays delivery.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence
import json
import logging
import threading

from .metrics import wake_signals_total

logger = logging.getLogger(__name__)

SCAN_TASK_NAME = "reminders.scan_and_dispatch"


@dataclass(frozen=True)
class WakeSignal:
    owner_id: Optional[str] = None
    reminder_ids: List[str] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps({"owner_id": self.owner_id, "reminder_ids": list(self.reminder_ids)})

    @classmethod
    def from_json(cls, raw: Any) -> "WakeSignal":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        return cls(owner_id=data.get("owner_id"), reminder_ids=list(data.get("reminder_ids") or []))


class WakeChannel(ABC):
    name = "channel"

    def notify(self, owner_id: str, reminder_ids: Sequence[str] = ()) -> bool:
        """Send a wake signal. Never raises; returns whether it was handed off."""
        signal = WakeSignal(owner_id=owner_id, reminder_ids=list(reminder_ids))
        try:
            self._send(signal)
        except Exception as e:
            logger.warning(f"⚠️ [Notify] {self.name} wake for owner {owner_id} not sent: {e!r}")
            return False
        wake_signals_total.inc()
        logger.debug(f"[Notify] {self.name} wake sent for owner {owner_id} ({len(signal.reminder_ids)} ids)")
        return True

    @abstractmethod
    def _send(self, signal: WakeSignal) -> None:
        raise NotImplementedError


class NullWakeChannel(WakeChannel):
    name = "none"

    def _send(self, signal: WakeSignal) -> None:
        return None


class InProcessWakeChannel(WakeChannel):
    """Wakes an agent running in the same process."""

    name = "in-process"

    def __init__(self, agent):
        self.agent = agent

    def _send(self, signal: WakeSignal) -> None:
        self.agent.wake(signal)


class RedisWakeChannel(WakeChannel):
    """Publishes wake signals on a Redis pub/sub channel."""

    name = "redis"

    def __init__(self, client, channel: str):
        self.client = client
        self.channel = channel

    def _send(self, signal: WakeSignal) -> None:
        self.client.publish(self.channel, signal.to_json())


class CeleryWakeChannel(WakeChannel):
    """Enqueues an immediate scan task on the Celery worker."""

    name = "celery"

    def __init__(self, celery_app, queue: Optional[str] = None):
        self.celery_app = celery_app
        self.queue = queue

    def _send(self, signal: WakeSignal) -> None:
        self.celery_app.send_task(SCAN_TASK_NAME, kwargs={"owner_id": signal.owner_id}, queue=self.queue)


class RedisWakeListener:
    """Background thread relaying Redis wake signals to an agent."""

    def __init__(self, client, channel: str, agent, poll_timeout: float = 1.0):
        self.client = client
        self.channel = channel
        self.agent = agent
        self.poll_timeout = poll_timeout
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="reminder-wake-listener", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)

    def _run(self) -> None:
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(self.channel)
        logger.info(f"👂 [Notify] Listening for wake signals on {self.channel}")
        try:
            while not self._stop.is_set():
                try:
                    message = pubsub.get_message(timeout=self.poll_timeout)
                except Exception as e:
                    # Timer-driven scans keep working while Redis is away
                    logger.warning(f"⚠️ [Notify] Wake listener read failed: {e!r}")
                    self._stop.wait(self.poll_timeout)
                    continue
                if message and message.get("type") == "message":
                    self.handle(message.get("data"))
        finally:
            pubsub.close()

    def handle(self, raw: Any) -> None:
        try:
            signal = WakeSignal.from_json(raw)
        except (ValueError, TypeError) as e:
            logger.warning(f"⚠️ [Notify] Ignoring malformed wake signal {raw!r}: {e}")
            return
        self.agent.wake(signal)
