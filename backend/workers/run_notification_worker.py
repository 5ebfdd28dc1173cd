import asyncio
import signal

from carenotify.core.container import create_app_container
from carenotify.settings import Settings


def main() -> None:
    """Main entry point for the headless delivery worker.

    Runs the same scheduled loops as the API process. Real-time pushes only
    reach users connected to this process, so websocket deliveries from a
    headless worker retry until they fall through to the next channel.
    """
    settings = Settings(override_path="config.worker.toml")
    container = create_app_container(settings)
    logger = container.logger()

    logger.info("Starting notification worker...")

    async def run() -> None:
        await container.db_connection().connect()
        runtime = container.runtime()

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        async with runtime:
            logger.info("Notification worker initialized")
            await stop_event.wait()
        logger.info("Notification worker shutdown complete")

    asyncio.run(run())


if __name__ == "__main__":
    main()
