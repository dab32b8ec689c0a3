"""
Standalone delivery agent process.

    python -m nutri_reminders.reminders.worker

Runs the trigger loop on its periodic timer and, when the Redis wake
channel is configured, scans immediately after every settings change.
"""
import logging
import signal
import sys
import threading

import redis
from dotenv import load_dotenv

load_dotenv()

from .config import settings  # noqa: E402
from .container import build_container  # noqa: E402
from .notifier import RedisWakeListener  # noqa: E402

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def main() -> int:
    """Main entry point for the worker process"""
    logger.info("🚀 Starting reminder delivery agent")
    container = build_container(settings)
    if settings.WAKE_CHANNEL == "redis":
        container.wake_listener = RedisWakeListener(
            redis.Redis.from_url(settings.REDIS_URL), settings.REDIS_WAKE_CHANNEL, container.agent
        )
        container.wake_listener.start()

    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"🛑 Shutdown requested (signal {signum})")
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        container.agent.start()
        stop.wait()
    except Exception as e:
        logger.error(f"❌ Worker process error: {e}")
        return 1
    finally:
        container.shutdown()
        logger.info("👋 Worker process terminated")
    return 0


if __name__ == "__main__":
    sys.exit(main())
