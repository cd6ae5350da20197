import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler

from dotenv import load_dotenv

from fieldcontrol.client import ApiClient
from fieldcontrol.config import Settings
from fieldcontrol.maintenance import run

logger = logging.getLogger(__name__)


def configure_logging(level="INFO", log_file=None):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(RotatingFileHandler(log_file, maxBytes=10485760, backupCount=5))

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def describe_error(error):
    """Loggable form of any failure that reached the top level."""
    if hasattr(error, "to_dict"):
        return error.to_dict()
    return {"name": type(error).__name__, "message": str(error)}


def main():
    # Load environment variables FIRST
    load_dotenv()

    try:
        settings = Settings.from_env()
    except ValueError as e:
        configure_logging()
        logger.error(f"error: {describe_error(e)}")
        return 1

    configure_logging(settings.log_level, settings.log_file)
    settings.log_summary()

    try:
        client = ApiClient(
            base_url=settings.base_url,
            api_key=settings.api_key,
            api_key_header=settings.api_key_header,
            timeout=settings.timeout,
        )
    except ValueError as e:
        logger.error(f"error: {describe_error(e)}")
        return 1

    try:
        asyncio.run(run(client, settings))
    except Exception as e:
        logger.error(f"error: {describe_error(e)}")
        logger.debug("Traceback of the failure", exc_info=True)
        return 1
    finally:
        client.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
