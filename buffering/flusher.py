"""
Flush dell'accumulatore Redis verso il persistent store.

Da chiamare solo mentre si tiene il flush lock: l'esclusività del lock è
ciò che rende sicuro svuotare l'hash e scrivere il bulk update.

Finestra di perdita accettata: se il processo muore (o il bulk write
fallisce) dopo lo svuotamento e prima della conferma del database, gli
incrementi svuotati vanno persi. Non esiste una transazione tra Redis e il
database; la perdita viene loggata con l'elenco delle operazioni e contata
in flush.lost_increments.
"""
import json
import logging
import time
from typing import Dict, List, Tuple

import redis.asyncio as redis

from buffering.errors import InvalidCounterKeyError
from buffering.types import CounterKey, FlushOutcome, FlushReport, IncrementOperation
from core import diagnostics_state
from core.logger import log_json, log_with_context

logger = logging.getLogger(__name__)


def parse_entries(entries: Dict[str, str]) -> Tuple[List[IncrementOperation], int]:
    """
    Converte il contenuto dell'hash accumulatore in operazioni di incremento.

    I totali a zero vengono scartati (nessun effetto sul valore persistito).

    Returns:
        Tuple (operations ordinate per chiave, numero di entry non decodificabili)
    """
    operations = []
    skipped = 0

    for raw_key, raw_value in entries.items():
        try:
            key = CounterKey.decode(raw_key)
            delta = int(raw_value)
        except (InvalidCounterKeyError, TypeError, ValueError) as e:
            skipped += 1
            logger.error(f"[FLUSH] Entry accumulatore scartata {raw_key!r}={raw_value!r}: {e}")
            continue

        if delta == 0:
            continue
        operations.append(IncrementOperation(key.entity_id, key.field_path, delta))

    operations.sort(key=lambda op: (op.entity_id, op.field_path))
    return operations, skipped


class BatchFlusher:
    """Svuota l'accumulatore e applica gli incrementi come unico bulk write."""

    def __init__(self, redis_client: redis.Redis, buffer_key: str, collection):
        self.redis = redis_client
        self.buffer_key = buffer_key
        self.collection = collection

    async def drain(self) -> Dict[str, str]:
        # MULTI/EXEC: un HINCRBY concorrente cade prima della lettura o nell'hash nuovo
        async with self.redis.pipeline(transaction=True) as pipe:
            entries, _ = await pipe.hgetall(self.buffer_key).delete(self.buffer_key).execute()
        return entries or {}

    async def flush_once(self) -> FlushReport:
        """
        Esegue un flush completo: drain, parse, bulk write.

        Returns:
            FlushReport con esito EMPTY o FLUSHED

        Raises:
            redis.RedisError: errore durante il drain (nessun incremento perso)
            Exception: errore del bulk write (incrementi svuotati persi, loggati)
        """
        started = time.monotonic()

        entries = await self.drain()
        if not entries:
            diagnostics_state.increment("flush.empty")
            return FlushReport(outcome=FlushOutcome.EMPTY)

        operations, skipped = parse_entries(entries)
        if skipped:
            diagnostics_state.increment("flush.bad_entry", skipped)

        if not operations:
            diagnostics_state.increment("flush.empty")
            return FlushReport(outcome=FlushOutcome.EMPTY, skipped_entries=skipped)

        try:
            result = await self.collection.bulk_increment(operations)
        except Exception as e:
            diagnostics_state.increment("flush.lost_increments", len(operations))
            lost = json.dumps([op.as_dict() for op in operations], ensure_ascii=False)
            log_with_context(
                "error",
                f"[FLUSH] Bulk write fallito dopo lo svuotamento, {len(operations)} incrementi persi: {e}. "
                f"Operazioni perse: {lost}",
                exc_info=True
            )
            raise

        diagnostics_state.increment("flush.operations", len(operations))
        if result.unmatched:
            diagnostics_state.increment("flush.unmatched", len(result.unmatched))
            log_with_context(
                "warning",
                f"[FLUSH] {len(result.unmatched)} documenti non trovati, incrementi ignorati: "
                f"{', '.join(result.unmatched[:20])}"
            )
        if result.failed:
            diagnostics_state.increment("flush.document_conflict", len(result.failed))
            for entity_id, reason in result.failed.items():
                log_with_context("error", f"[FLUSH] Documento {entity_id} non aggiornato: {reason}")

        elapsed_ms = round((time.monotonic() - started) * 1000, 2)
        log_json(
            "info",
            "flush completato",
            outcome=FlushOutcome.FLUSHED.value,
            operations=len(operations),
            matched=len(result.matched),
            unmatched=len(result.unmatched),
            failed=len(result.failed),
            elapsed_ms=elapsed_ms,
        )

        return FlushReport(
            outcome=FlushOutcome.FLUSHED,
            operations=operations,
            result=result,
            skipped_entries=skipped,
        )
