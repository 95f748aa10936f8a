"""
Email intake service.

Wires the IMAP transport, language model client, Supabase datastore and
storage into the automation controller, then runs until interrupted.

    python -m intake.main
"""

import asyncio
import logging
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from intake.config import load_settings
from intake.services.automation import AutomationController
from intake.services.datastore import SupabaseDatastore
from intake.services.llm import LanguageModelClient
from intake.services.mail_transport import ImapMailTransport
from intake.services.pipeline import EmailIngestionPipeline
from intake.services.storage import ResumeStorage

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


def build_controller(scheduler: AsyncIOScheduler) -> AutomationController:
    datastore = SupabaseDatastore()
    transport = ImapMailTransport()
    pipeline = EmailIngestionPipeline(
        transport=transport,
        llm=LanguageModelClient(),
        datastore=datastore,
        storage=ResumeStorage(),
    )
    return AutomationController(
        datastore=datastore,
        transport=transport,
        pipeline=pipeline,
        scheduler=scheduler,
        settings=load_settings(),
    )


async def run() -> None:
    controller = build_controller(AsyncIOScheduler())

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    state = await controller.initialize()
    logger.info("Email intake service started in %s state", state.value)

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down email intake service")
        await controller.shutdown()


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
