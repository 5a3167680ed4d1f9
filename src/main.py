"""
Value Investor Agent - entry point
Wires configuration, job catalog, Telegram gateway, reasoning client and state
store into the orchestrator and runs it until SIGINT/SIGTERM.
"""
import asyncio
import signal
import sys

from dotenv import load_dotenv
from loguru import logger

from agent.orchestrator import Orchestrator
from infra.cancellation import CancelToken
from infra.llm_client import create_llm_client
from infra.logging_config import configure_logging
from jobs.catalog import CatalogError, build_catalog
from messaging.gateway import TelegramGateway
from storage.state_store import create_state_store
from utils.config import Settings, settings

# Exported into os.environ so the job subprocesses see the same .env values
load_dotenv()


def setup_logging(config: Settings) -> str:
    """Configure logging to output to both console and file."""
    return configure_logging(
        log_file_prefix="value_agent",
        logs_dir=config.log_dir,
        console_level=config.log_level,
    )


def install_signal_handlers(cancel: CancelToken) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.cancel)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support
            logger.debug(f"Signal handler for {sig.name} not installed")


async def run_agent(config: Settings) -> None:
    catalog = build_catalog(config)
    logger.info(f"Jobs: {', '.join(catalog.job_names)}")
    logger.info(f"Pipelines: {', '.join(catalog.pipeline_names)}")

    cancel = CancelToken()
    install_signal_handlers(cancel)

    llm_client = create_llm_client(config)
    state_store = create_state_store(config)
    async with TelegramGateway(config.telegram_bot_token, config.telegram_chat_id) as gateway:
        orchestrator = Orchestrator(config, gateway, llm_client, catalog, state_store=state_store)
        await orchestrator.run(cancel)


def main():
    """Main entry point"""
    log_file = setup_logging(settings)
    logger.info(f"📝 Logging to: {log_file}")

    missing = settings.validate_required()
    if missing:
        logger.error(f"❌ Missing required configuration: {', '.join(missing)}")
        sys.exit(1)

    logger.info("✅ Configuration loaded:")
    for line in settings.safe_summary().splitlines():
        logger.info(f"   {line}")

    try:
        asyncio.run(run_agent(settings))
    except CatalogError as e:
        logger.error(f"❌ {e}")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"❌ Agent failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
