import asyncio
import logging
import signal

from dotenv import load_dotenv

# Carica variabili ambiente
load_dotenv()

# Configurazione logging colorato PRIMA di qualsiasi altro import che usa logging
from core.config import get_config
from core.logger import setup_colored_logging

setup_colored_logging(get_config().service_name)

from buffering.buffered_increments import BufferedIncrements
from core.database import DocumentCollection, configure_database, create_tables, dispose_engine
from core.redis_client import close_redis, get_redis

logger = logging.getLogger(__name__)


async def main():
    config = get_config()
    config.validate_config()

    configure_database(config.database_url)
    await create_tables()
    redis_client = get_redis(config.redis_url)

    collection = DocumentCollection(config.collection_name)
    buffered = BufferedIncrements(
        collection,
        redis_client,
        config.flush_interval_ms,
        lease_duration_ms=config.lease_duration_ms,
        renew_interval_ms=config.renew_interval_ms,
        buffer_key_prefix=config.buffer_key_prefix,
        lock_key_prefix=config.lock_key_prefix,
        timezone=config.scheduler_timezone,
    )
    logger.info(
        f"[WORKER] Flusher avviato per '{config.collection_name}' "
        f"(intervallo {buffered.flush_interval_ms}ms, lease {buffered.lease_duration_ms}ms)"
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        logger.info("[WORKER] Arresto flusher")
        await buffered.aclose()
        await close_redis(redis_client)
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
