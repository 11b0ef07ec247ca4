"""
Facciata BufferedIncrements.

Compone IncrementBuffer, LockCoordinator, BatchFlusher e FlushScheduler per
una coppia (collezione, Redis). Più istanze sulla stessa coppia, anche in
processi diversi e con avvii sfalsati, convergono a un solo flush per
intervallo grazie al flush lock.
"""
from typing import Optional

import redis.asyncio as redis

from buffering.flusher import BatchFlusher
from buffering.increment_buffer import IncrementBuffer
from buffering.lock import LockCoordinator
from buffering.types import FlushOutcome
from core import diagnostics_state
from core.logger import clear_flush_context, log_with_context, set_flush_context
from core.scheduler import FlushScheduler


DEFAULT_BUFFER_KEY_PREFIX = "buffered_increments"
DEFAULT_LOCK_KEY_PREFIX = "flush_lock"
MIN_LEASE_DURATION_MS = 5000


def default_lease_duration_ms(flush_interval_ms: int) -> int:
    return max(MIN_LEASE_DURATION_MS, 3 * flush_interval_ms)


def default_renew_interval_ms(lease_duration_ms: int) -> int:
    return max(1, lease_duration_ms // 5)


class BufferedIncrements:
    """
    Buffer di incrementi su Redis con flush periodico e coordinato.

    Lo scheduler parte alla costruzione: va creato dentro un event loop
    asyncio in esecuzione. `destroy()` ferma i tick futuri.
    """

    def __init__(
        self,
        collection,
        redis_client: redis.Redis,
        flush_interval_ms: int,
        *,
        lease_duration_ms: Optional[int] = None,
        renew_interval_ms: Optional[int] = None,
        buffer_key_prefix: Optional[str] = None,
        lock_key_prefix: Optional[str] = None,
        timezone: str = "UTC",
    ):
        """
        Args:
            collection: DocumentCollection con bulk_increment()
            redis_client: Client redis.asyncio (decode_responses=True)
            flush_interval_ms: Intervallo flush in millisecondi (> 0)
            lease_duration_ms: Durata lease (default max(5000, 3 x intervallo))
            renew_interval_ms: Rinnovo lease (default lease / 5)
            buffer_key_prefix: Prefisso hash accumulatore
            lock_key_prefix: Prefisso chiave flush lock
            timezone: Timezone scheduler
        """
        if isinstance(flush_interval_ms, bool) or not isinstance(flush_interval_ms, int) or flush_interval_ms <= 0:
            raise ValueError(f"flush_interval_ms deve essere un intero positivo, ricevuto {flush_interval_ms!r}")

        self.collection = collection
        self.redis = redis_client
        self.flush_interval_ms = flush_interval_ms
        if lease_duration_ms is None:
            lease_duration_ms = default_lease_duration_ms(flush_interval_ms)
        if renew_interval_ms is None:
            renew_interval_ms = default_renew_interval_ms(lease_duration_ms)
        if lease_duration_ms <= 0 or renew_interval_ms <= 0:
            raise ValueError(
                f"lease_duration_ms e renew_interval_ms devono essere positivi, "
                f"ricevuti {lease_duration_ms!r} e {renew_interval_ms!r}"
            )

        self.lease_duration_ms = lease_duration_ms
        self.renew_interval_ms = renew_interval_ms
        if self.renew_interval_ms >= self.lease_duration_ms:
            raise ValueError(
                f"renew_interval_ms ({self.renew_interval_ms}) deve essere minore di "
                f"lease_duration_ms ({self.lease_duration_ms})"
            )

        # Accumulatore e lock sono scoped per collezione
        self.buffer_key = f"{buffer_key_prefix or DEFAULT_BUFFER_KEY_PREFIX}:{collection.name}"
        self.lock_key = f"{lock_key_prefix or DEFAULT_LOCK_KEY_PREFIX}:{collection.name}"

        self.buffer = IncrementBuffer(redis_client, self.buffer_key)
        self.lock = LockCoordinator(redis_client)
        self.flusher = BatchFlusher(redis_client, self.buffer_key, collection)

        self.scheduler = FlushScheduler(
            self.flush_if_master,
            flush_interval_ms,
            name=collection.name,
            timezone=timezone,
        )

    async def increment(self, entity_id: str, field_path: str, delta: int) -> None:
        """Incrementa (entity_id, field_path) di delta nel buffer Redis."""
        await self.buffer.increment(entity_id, field_path, delta)

    async def flush_if_master(self) -> FlushOutcome:
        """
        Un tentativo di flush: esegue il flush solo se acquisisce il lock.

        Returns:
            LOCKED se un'altra istanza sta facendo il flush, altrimenti EMPTY/FLUSHED

        Raises:
            Errori Redis o del bulk write (loggati dal flusher, contati dallo scheduler)
        """
        diagnostics_state.increment("flush.attempt")
        set_flush_context(self.collection.name)
        try:
            run = await self.lock.try_acquire_and_run(
                self.lock_key,
                self.lease_duration_ms,
                self.renew_interval_ms,
                self.flusher.flush_once,
            )

            if not run.acquired:
                return FlushOutcome.LOCKED

            report = run.value
            if report.outcome == FlushOutcome.FLUSHED:
                diagnostics_state.increment("flush.success")
            if run.lease_lost:
                log_with_context("warning", f"[FLUSH] Flush completato dopo la perdita del lease su {self.lock_key}")
            return report.outcome
        finally:
            clear_flush_context()

    def destroy(self) -> None:
        """Ferma il flush periodico. Idempotente; non interrompe un flush già in corso."""
        self.scheduler.destroy()

    async def aclose(self) -> None:
        """destroy() e attesa del flush eventualmente in corso."""
        self.destroy()
        await self.scheduler.wait_idle()
