"""
Lock distribuito con lease su Redis.

Acquisizione con SET NX PX e token casuale; durante il lavoro un task
asyncio separato rinnova il lease finché il token in Redis è ancora il
nostro. Rinnovo e rilascio confrontano il token dentro uno script Lua,
quindi non toccano mai il lease di un altro holder subentrato dopo una
scadenza.
"""
import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from core import diagnostics_state
from core.logger import log_with_context


# KEYS[1] = lock, ARGV[1] = token, ARGV[2] = lease in ms
RENEW_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""

# KEYS[1] = lock, ARGV[1] = token
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


@dataclass
class Lease:
    name: str
    token: str
    lost: bool = False


@dataclass
class LockRunResult:
    acquired: bool
    lease_lost: bool = False
    value: Any = None


class LockCoordinator:
    """Mutua esclusione tra istanze che condividono lo stesso Redis."""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client
        self._renew_script = redis_client.register_script(RENEW_SCRIPT)
        self._release_script = redis_client.register_script(RELEASE_SCRIPT)

    async def try_acquire_and_run(
        self,
        lock_name: str,
        lease_duration_ms: int,
        renew_interval_ms: int,
        work: Callable[[], Awaitable[Any]],
    ) -> LockRunResult:
        """
        Esegue work solo se riesce ad acquisire il lock, senza attendere.

        Args:
            lock_name: Chiave Redis del lock
            lease_duration_ms: Durata del lease (TTL della chiave)
            renew_interval_ms: Periodo del rinnovo, strettamente minore del lease
            work: Coroutine function da eseguire sotto lease

        Returns:
            LockRunResult; acquired=False se un'altra istanza tiene il lock

        Raises:
            ValueError: parametri di lease incoerenti
            redis.RedisError: errori durante l'acquisizione
            Qualsiasi eccezione sollevata da work, dopo il rilascio del lock
        """
        if lease_duration_ms <= 0 or renew_interval_ms <= 0:
            raise ValueError("lease_duration_ms e renew_interval_ms devono essere positivi")
        if renew_interval_ms >= lease_duration_ms:
            raise ValueError(
                f"renew_interval_ms ({renew_interval_ms}) deve essere minore di "
                f"lease_duration_ms ({lease_duration_ms})"
            )

        lease = Lease(name=lock_name, token=uuid.uuid4().hex)
        acquired = await self.redis.set(lock_name, lease.token, nx=True, px=lease_duration_ms)

        if not acquired:
            diagnostics_state.increment("lock.not_acquired")
            log_with_context("debug", f"[FLUSH_LOCK] {lock_name} tenuto da un'altra istanza, skip")
            return LockRunResult(acquired=False)

        diagnostics_state.increment("lock.acquired")
        log_with_context("debug", f"[FLUSH_LOCK] Acquisito {lock_name} (lease {lease_duration_ms}ms)")

        renew_task = asyncio.create_task(
            self._renew_loop(lease, lease_duration_ms, renew_interval_ms),
            name=f"lease-renew:{lock_name}",
        )
        try:
            value = await work()
        finally:
            renew_task.cancel()
            await asyncio.gather(renew_task, return_exceptions=True)
            await self._release(lease)

        return LockRunResult(acquired=True, lease_lost=lease.lost, value=value)

    async def _renew_loop(self, lease: Lease, lease_duration_ms: int, renew_interval_ms: int) -> None:
        while True:
            await asyncio.sleep(renew_interval_ms / 1000)

            try:
                renewed = await self._renew_script(keys=[lease.name], args=[lease.token, lease_duration_ms])
            except RedisError as e:
                # Il tick successivo riprova; se i rinnovi continuano a fallire il lease scade
                diagnostics_state.increment("lock.renew_error")
                log_with_context("warning", f"[FLUSH_LOCK] Rinnovo di {lease.name} fallito: {e}")
                continue

            if not renewed:
                lease.lost = True
                diagnostics_state.increment("lock.lease_lost")
                log_with_context(
                    "error",
                    f"[FLUSH_LOCK] Lease perso su {lease.name}: token scaduto o preso da un'altra "
                    f"istanza, il flush in corso non è più esclusivo"
                )
                return

    async def _release(self, lease: Lease) -> Optional[bool]:
        try:
            released = await self._release_script(keys=[lease.name], args=[lease.token])
        except RedisError as e:
            diagnostics_state.increment("lock.release_error")
            log_with_context(
                "error",
                f"[FLUSH_LOCK] Rilascio di {lease.name} fallito, scadrà col TTL: {e}",
                exc_info=True
            )
            return None

        if not released:
            # Scaduto dopo l'ultimo rinnovo: il lavoro appena finito non era più esclusivo
            if not lease.lost:
                lease.lost = True
                diagnostics_state.increment("lock.lease_lost")
            log_with_context(
                "error",
                f"[FLUSH_LOCK] Lease perso su {lease.name}: al rilascio il token non è più nostro, "
                f"chiave lasciata intatta"
            )
            return False
        return True
