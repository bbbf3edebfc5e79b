"""Run the OctoRank background services until interrupted."""

import asyncio
import logging
import signal

from octorank.core.config import settings
from octorank.core.database import create_engine
from octorank.services.runtime import SessionBackgroundRuntime

logger = logging.getLogger("octorank")


async def run() -> None:
    engine = create_engine()
    runtime = SessionBackgroundRuntime(engine)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C raises instead
            pass

    await runtime.start()
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()
        await engine.dispose()


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
