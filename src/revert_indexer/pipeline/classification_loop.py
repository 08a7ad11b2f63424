"""
Polling loop that drives classification.

    Fetching --(storage error)--> wait storage_retry_interval --> Fetching
    Fetching --(no rows)--------> wait poll_interval -----------> Fetching
    Fetching --(rows)-----------> ProcessingBatch --------------> Fetching

Every wait goes through ``stop_event.wait`` so a shutdown interrupts it
immediately, and tests can drive the loop one step at a time with
``run_once``. Each hash is handled independently (trace, classify, write);
a hash whose trace hit a transport failure is not written and therefore
shows up again in a later batch.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import List, Optional

from revert_indexer.pipeline.classification import Classification, classify
from revert_indexer.storage.transactions import StorageError
from revert_indexer.variables import (
    BATCH_SIZE,
    ERROR_REVERTED,
    POLL_INTERVAL,
    SHUTDOWN_CHECK_INTERVAL,
    STORAGE_RETRY_INTERVAL,
    WORKERS,
)

logger = logging.getLogger(__name__)


@dataclass
class LoopStats:
    batches: int = 0
    idle_polls: int = 0
    classified: int = 0
    reverted: int = 0
    transport_failures: int = 0
    write_failures: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def count(self, name: str) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)


class ClassificationLoop:
    def __init__(
        self,
        store,
        client,
        *,
        batch_size: int = BATCH_SIZE,
        from_block: int = 0,
        to_block: int = 0,
        workers: int = WORKERS,
        poll_interval: float = POLL_INTERVAL,
        storage_retry_interval: float = STORAGE_RETRY_INTERVAL,
        stop_event: Optional[threading.Event] = None,
    ):
        self.store = store
        self.client = client
        self.batch_size = batch_size
        self.from_block = from_block
        self.to_block = to_block
        self.workers = workers
        self.poll_interval = poll_interval
        self.storage_retry_interval = storage_retry_interval
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.stats = LoopStats()
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="classify") if workers > 1 else None

    # ---------- Per item ----------
    def process(self, tx_hash: str) -> Optional[Classification]:
        """Trace, classify and store one transaction. Returns what was written, if anything."""
        if self.stop_event.is_set():
            return None

        classification = classify(self.client.trace(tx_hash))
        if classification is None:
            self.stats.count("transport_failures")
            return None

        try:
            self.store.apply(tx_hash, classification.as_record())
        except StorageError as e:
            logger.error("Unable to store classification for %s: %s", tx_hash, e)
            self.stats.count("write_failures")
            return None

        self.stats.count("classified")
        if classification.error == ERROR_REVERTED:
            self.stats.count("reverted")
        logger.debug("Classified %s: %s", tx_hash, classification.as_record())
        return classification

    def _process_batch(self, hashes: List[str]) -> int:
        results = []
        if self._executor is None:
            for txh in hashes:
                if self.stop_event.is_set():
                    break
                results.append((txh, self._safe_process(txh)))
            return sum(1 for _, written in results if written is not None)

        pending = {self._executor.submit(self.process, txh): txh for txh in hashes}
        while pending:
            done, _ = wait(pending, timeout=SHUTDOWN_CHECK_INTERVAL, return_when=FIRST_COMPLETED)
            for future in done:
                txh = pending.pop(future)
                try:
                    results.append((txh, future.result()))
                except Exception:
                    logger.exception("Unexpected failure while classifying %s", txh)
            if pending and self.stop_event.is_set():
                # unwritten hashes stay unclassified and are picked up on restart
                for future in pending:
                    future.cancel()
                logger.info("Abandoning %d in-flight traces", len(pending))
                break
        return sum(1 for _, written in results if written is not None)

    def _safe_process(self, tx_hash: str) -> Optional[Classification]:
        try:
            return self.process(tx_hash)
        except Exception:
            logger.exception("Unexpected failure while classifying %s", tx_hash)
            return None

    # ---------- Loop ----------
    def run_once(self) -> int:
        """One Fetching step; returns the number of rows written."""
        try:
            hashes = self.store.select_batch(self.batch_size, self.from_block, self.to_block)
        except StorageError as e:
            logger.error("%s", e)
            self.stop_event.wait(self.storage_retry_interval)
            return 0

        if not hashes:
            self.stats.count("idle_polls")
            logger.debug("Waiting for new transactions...")
            self.stop_event.wait(self.poll_interval)
            return 0

        self.stats.count("batches")
        written = self._process_batch(hashes)
        logger.info("Classified %d of %d transactions", written, len(hashes))
        return written

    def run(self) -> None:
        logger.info(
            "Classification loop started (workers=%d, batch=%d, blocks=%s-%s)",
            self.workers, self.batch_size, self.from_block or "*", self.to_block or "*",
        )
        try:
            while not self.stop_event.is_set():
                self.run_once()
        finally:
            self.close()
            logger.info("Classification loop stopped: %s", self.stats)

    def stop(self) -> None:
        self.stop_event.set()

    def close(self) -> None:
        if self._executor is not None:
            # after a stop, threads still blocked on the node are left to finish on their own
            self._executor.shutdown(wait=not self.stop_event.is_set(), cancel_futures=True)
