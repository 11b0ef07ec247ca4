"""
Accumulo degli incrementi nello shared store.

Ogni incremento è un singolo HINCRBY sull'hash accumulatore della collezione:
l'atomicità tra chiamanti concorrenti (stesso processo o processi diversi)
è garantita da Redis, nessun lock lato client.
"""
import redis.asyncio as redis

from buffering.types import CounterKey
from core import diagnostics_state


class IncrementBuffer:
    """API client-facing per accumulare incrementi in Redis."""

    def __init__(self, redis_client: redis.Redis, buffer_key: str):
        self.redis = redis_client
        self.buffer_key = buffer_key

    async def increment(self, entity_id: str, field_path: str, delta: int) -> None:
        """
        Aggiunge delta al contatore (entity_id, field_path).

        Args:
            entity_id: ID del documento
            field_path: Path del campo (segmenti separati da '.')
            delta: Intero qualsiasi, anche negativo o zero

        Raises:
            TypeError: entity_id o field_path non stringa, delta non intero
            redis.RedisError: errori di connessione/scrittura, propagati senza retry
        """
        for name, value in (("entity_id", entity_id), ("field_path", field_path)):
            if not isinstance(value, str):
                raise TypeError(f"{name} deve essere una stringa, ricevuto {type(value).__name__}")
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise TypeError(f"delta deve essere un intero, ricevuto {type(delta).__name__}")

        key = CounterKey(entity_id, field_path).encode()
        await self.redis.hincrby(self.buffer_key, key, delta)
        diagnostics_state.increment("increment.calls")
