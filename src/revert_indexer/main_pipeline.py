# Entry point: wire storage, the RPC client and the classification loop together
import logging
import signal
import sys
from typing import List, Optional

from revert_indexer.config import ConfigError, Settings, load_settings
from revert_indexer.on_chain.rpc_client import TraceClient
from revert_indexer.pipeline.classification_loop import ClassificationLoop
from revert_indexer.storage.transactions import StorageError, TransactionStore, connect_pool

LOG_FORMAT = '%(asctime)s %(levelname)s %(message)s'
SHUTDOWN_SIGNALS = ("SIGHUP", "SIGTERM", "SIGQUIT", "SIGABRT", "SIGINT")

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    kwargs = {}
    if settings.log_file:
        kwargs = {"filename": settings.log_file, "filemode": "a"}  # append mode
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
        **kwargs,
    )
    # urllib3 logs every pooled connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def install_signal_handlers(loop: ClassificationLoop) -> None:
    def handler(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        loop.stop()

    for name in SHUTDOWN_SIGNALS:
        sig = getattr(signal, name, None)  # not every platform has all of them
        if sig is not None:
            signal.signal(sig, handler)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        settings = load_settings(argv)
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error("Invalid configuration: %s", e)
        return 2

    configure_logging(settings)
    if settings.config_file:
        logger.warning("Using config file: %s", settings.config_file)

    try:
        pool = connect_pool(settings.database_url, settings.workers + 1)
    except StorageError as e:
        logger.error("%s", e)
        return 1

    store = TransactionStore(pool)
    client = TraceClient(settings.rpc_url, timeout=settings.rpc_timeout, pool_size=settings.workers)
    loop = ClassificationLoop(
        store,
        client,
        batch_size=settings.batch_size,
        from_block=settings.from_block,
        to_block=settings.to_block,
        workers=settings.workers,
        poll_interval=settings.poll_interval,
    )
    install_signal_handlers(loop)

    try:
        loop.run()
    finally:
        client.close()
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
