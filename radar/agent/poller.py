"""Background poller — runs the poll cycle on a fixed interval until signalled."""

import asyncio
import logging
import signal

from dotenv import load_dotenv

from radar.agent.cycle import PollCycle
from radar.agent.scheduler import create_poll_scheduler
from radar.config import RadarConfig
from radar.mail.gmail_client import build_gmail_client
from radar.mail.retriever import MailboxRetriever
from radar.storage.db import RadarDatabase

logger = logging.getLogger(__name__)


class PollerService:
    """Owns the scheduler and keeps the process alive between cycles.

    Cycle failures never reach this level: PollCycle.run() reports them in
    its summary and the next tick is the retry.

    Usage::

        service = PollerService(cycle, interval_seconds=180)
        await service.run()
    """

    def __init__(self, cycle: PollCycle, interval_seconds: int) -> None:
        self._cycle = cycle
        self._interval = interval_seconds
        self._stop_event = asyncio.Event()

    def stop(self) -> None:
        """Signal the service to shut down once the current cycle finishes."""
        logger.info("Shutdown requested — stopping after the current cycle")
        self._stop_event.set()

    async def run(self) -> None:
        """Start the scheduler and block until stop() is called."""
        scheduler = create_poll_scheduler(self._cycle, self._interval)
        scheduler.start()
        try:
            await self._stop_event.wait()
        finally:
            scheduler.shutdown(wait=False)
        logger.info("Poller stopped")


def build_poll_cycle(config: RadarConfig, db: RadarDatabase) -> PollCycle:
    """Wire a PollCycle that authorises a fresh Gmail client every cycle."""
    return PollCycle(
        retriever_factory=lambda: MailboxRetriever(build_gmail_client(config.token_path)),
        db=db,
    )


# ── Entry point ────────────────────────────────────────────────────────────────


def main() -> None:
    """Start the poller. Called by `radar run` and `python -m radar.agent.poller`."""
    load_dotenv()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        asyncio.run(_amain(RadarConfig.from_env()))
    except KeyboardInterrupt:
        # Ctrl+C on Windows (no add_signal_handler) arrives here
        logger.info("Interrupted — goodbye")


async def _amain(config: RadarConfig) -> None:
    """Async entry point: wire up signal handlers and run the service."""
    db = RadarDatabase(db_path=config.db_path)
    service = PollerService(build_poll_cycle(config, db), config.poll_interval)

    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, service.stop)
    except (NotImplementedError, AttributeError):
        pass

    try:
        await service.run()
    finally:
        db.close()


if __name__ == "__main__":
    main()
