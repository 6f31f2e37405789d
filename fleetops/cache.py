import json
from typing import Any, Optional
from redis.asyncio import Redis
from .config import settings


redis_client = Redis.from_url(settings.REDIS_URL, decode_responses=True)

TRACKING_SNAPSHOT_KEY = "tracking:snapshot"


def onboarding_key(session_id: str) -> str:
    return f"onboarding:{session_id}"


async def get_json(client: Redis, key: str) -> Optional[Any]:
    raw = await client.get(key)
    if raw is None:
        return None
    return json.loads(raw)


async def set_json(client: Redis, key: str, value: Any, ttl_sec: Optional[int] = None) -> None:
    await client.set(key, json.dumps(value, default=str), ex=ttl_sec)


async def ping(client: Redis) -> bool:
    try:
        return await client.ping()
    except Exception:
        return False
