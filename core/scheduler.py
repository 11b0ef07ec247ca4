"""
Scheduler per il flush periodico degli incrementi.

Ogni FlushScheduler possiede il proprio AsyncIOScheduler (APScheduler) con un
solo job a intervallo fisso: istanze diverse, nello stesso processo o in
processi diversi, hanno timer indipendenti e non allineati. Chi fa davvero
il flush lo decide il lock su Redis, non lo scheduler.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Set

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core import diagnostics_state

logger = logging.getLogger(__name__)


class FlushScheduler:
    """Timer periodico che invoca flush_fn ogni flush_interval_ms."""

    def __init__(
        self,
        flush_fn: Callable[[], Awaitable[Any]],
        flush_interval_ms: int,
        name: str = "flush",
        timezone: str = "UTC",
    ):
        """
        Crea e avvia lo scheduler (serve un event loop asyncio in esecuzione).

        Args:
            flush_fn: Coroutine function chiamata a ogni tick
            flush_interval_ms: Intervallo in millisecondi (> 0)
            name: Nome del job nei log
            timezone: Timezone dello scheduler
        """
        if isinstance(flush_interval_ms, bool) or flush_interval_ms <= 0:
            raise ValueError(f"flush_interval_ms deve essere positivo, ricevuto {flush_interval_ms!r}")

        self.name = name
        self.flush_interval_ms = flush_interval_ms
        self._flush_fn = flush_fn
        self._destroyed = False
        self._inflight: Set[asyncio.Task] = set()

        tz = pytz.timezone(timezone)
        self._scheduler = AsyncIOScheduler(timezone=tz)
        self._scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(seconds=flush_interval_ms / 1000, timezone=tz),
            id=f"flush:{name}",
            name=f"Flush {name}",
            replace_existing=True,
            max_instances=1,  # Un flush lento non si sovrappone al proprio tick successivo
            coalesce=True,
            misfire_grace_time=None
        )
        self._scheduler.start()

        logger.info(f"[SCHEDULER] Flush {name} avviato: ogni {flush_interval_ms}ms")

    @property
    def running(self) -> bool:
        return not self._destroyed and self._scheduler.running

    async def _tick(self):
        # shutdown() cancella i job in corso: il flush già avviato deve arrivare in fondo
        task = asyncio.ensure_future(self._run_once())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        await asyncio.shield(task)

    async def _run_once(self):
        try:
            await self._flush_fn()
        except Exception as e:
            # Il timer continua: il prossimo tick riprova
            diagnostics_state.increment("flush.failed")
            logger.error(f"[SCHEDULER] Tentativo di flush {self.name} fallito: {e}", exc_info=True)

    def destroy(self):
        """Ferma i tick futuri. Chiamate successive non hanno effetto."""
        if self._destroyed:
            return
        self._destroyed = True

        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info(f"[SCHEDULER] Flush {self.name}: scheduler fermato")

    async def wait_idle(self):
        """Attende la fine dei flush già partiti (da chiamare dopo destroy)."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
