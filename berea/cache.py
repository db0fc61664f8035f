import json
import os
import time
from typing import Optional

import redis


REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CACHE_PREFIX = os.getenv("CACHE_PREFIX", "berea")

_REDIS_CLIENT = None
_REDIS_AVAILABLE = True
_MEM_STORE = {}


def _get_redis():
    global _REDIS_CLIENT, _REDIS_AVAILABLE
    if not _REDIS_AVAILABLE:
        return None
    if _REDIS_CLIENT is None:
        client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
        try:
            client.ping()
        except redis.RedisError:
            _REDIS_AVAILABLE = False
            return None
        _REDIS_CLIENT = client
    return _REDIS_CLIENT


def _key(namespace: str, identifier: str) -> str:
    return f"{CACHE_PREFIX}:{namespace}:{identifier}"


def _mem_get(key: str) -> Optional[dict]:
    data = _MEM_STORE.get(key)
    if not data:
        return None
    expires_ts = int(data.get("expires_at_ts") or 0)
    if expires_ts and time.time() >= expires_ts:
        _MEM_STORE.pop(key, None)
        return None
    return data


def _mem_prune(now: float) -> None:
    expired = [k for k, v in _MEM_STORE.items() if v["expires_at_ts"] and now >= v["expires_at_ts"]]
    for key in expired:
        _MEM_STORE.pop(key, None)


def cache_get(namespace: str, identifier: str):
    key = _key(namespace, identifier)
    client = _get_redis()
    if client is None:
        data = _mem_get(key)
        return data["value"] if data else None
    try:
        raw = client.get(key)
    except redis.RedisError:
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def cache_set(namespace: str, identifier: str, value, ttl_sec: int) -> None:
    key = _key(namespace, identifier)
    client = _get_redis()
    if client is None:
        now = time.time()
        _mem_prune(now)
        _MEM_STORE[key] = {
            "value": value,
            "expires_at_ts": int(now) + int(ttl_sec) if ttl_sec else 0,
        }
        return
    try:
        client.set(key, json.dumps(value, ensure_ascii=False), ex=int(ttl_sec) or None)
    except redis.RedisError:
        return
