"""
Survey Scheduler Worker.

Periodically starts SMS surveys for service visits completed 24-48 hours
ago and resends failed survey messages. Runs as a long-lived background
process; each run processes its batch sequentially.

Start with:
    python -m src.workers.survey_scheduler
    python -m src.workers.survey_scheduler --once
"""

from __future__ import annotations

import argparse
import asyncio
import signal

from dotenv import load_dotenv
load_dotenv(".env.local")

from src.config import get_settings
from src.logging_config import setup_logging, get_logger
from src.services.survey_service import SurveyService, get_survey_service

setup_logging()
logger = get_logger(__name__)
settings = get_settings()


class SurveySchedulerWorker:
    """
    Runs the scheduling and retry jobs on a fixed interval.

    A failing run is logged and the loop carries on with the next one.
    """

    def __init__(self, service: SurveyService | None = None, poll_interval: float | None = None) -> None:
        self._running = False
        self._service = service or get_survey_service()
        self._poll_interval = poll_interval or settings.scheduler_poll_interval_seconds
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Start the polling loop."""
        self._running = True
        logger.info("survey_scheduler_started", poll_interval=self._poll_interval)

        while self._running:
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        """Gracefully stop the polling loop."""
        self._running = False
        self._stop_event.set()
        logger.info("survey_scheduler_stopped")

    async def run_once(self) -> dict[str, dict[str, int]]:
        """Schedule new surveys, then retry failed messages."""
        results: dict[str, dict[str, int]] = {}
        try:
            results["scheduled"] = await self._service.schedule_surveys()
        except Exception as e:
            logger.error("survey_scheduling_error", error=str(e))

        try:
            results["retried"] = await self._service.retry_failed_messages()
        except Exception as e:
            logger.error("message_retry_run_error", error=str(e))

        return results


async def main(once: bool = False) -> None:
    worker = SurveySchedulerWorker()

    if once:
        await worker.run_once()
        return

    loop = asyncio.get_running_loop()

    def shutdown_handler() -> None:
        logger.info("shutdown_signal_received")
        asyncio.ensure_future(worker.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.start()
    except KeyboardInterrupt:
        await worker.stop()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Schedule SMS surveys and retry failed messages")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()
    asyncio.run(main(once=args.once))
