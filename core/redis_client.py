# core/redis_client.py
import os
from typing import Optional

import redis.asyncio as redis


def get_redis(url: Optional[str] = None) -> redis.Redis:
    # decode_responses: hash e token tornano come str, non bytes
    url = url or os.getenv("REDIS_URL")
    if not url:
        raise RuntimeError("REDIS_URL not set")
    return redis.from_url(url, decode_responses=True)


async def close_redis(r: redis.Redis) -> None:
    await r.aclose()
