"""
Handles the asynchronous message channel of the trip planner.

Uses a Redis stream as the input/output topic: each entry carries a `key`
(e.g. "input-<userId>" or "output-<userId>") and a `value` (the JSON query or
the rendered answer). Only the shared client lifecycle and stream read/append
helpers live here.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import redis.asyncio as redis # Async Redis client

from .utils import get_env_var, async_retry

logger = logging.getLogger(__name__)

REDIS_URL = get_env_var("REDIS_URL", "redis://localhost:6379/0")

# Connection pool handled internally by redis-py
_redis_client: Optional[redis.Redis] = None

@dataclass(frozen=True)
class StreamMessage:
    """One entry read from the stream"""
    entry_id:str
    key:str
    value:str

async def get_redis_client(url:Optional[str] = None) -> redis.Redis:
    """Initializes and returns the async Redis client"""
    global _redis_client
    if _redis_client is None:
        redis_url = url or REDIS_URL
        logger.info(f"Initializing Redis client for URL: {redis_url}")
        if not redis_url:
            raise ValueError("REDIS_URL environment variable not set")
        try:
            _redis_client = redis.from_url(redis_url, decode_responses=True,
                                           max_connections = 20)
            # Test connection
            await _redis_client.ping()
            logger.info("Redis client initialized and connection verified")
        except Exception as e:
            logger.error(f"Failed to initialize Redis client: {e}", exc_info = True)
            _redis_client = None
            raise
    return _redis_client

async def close_redis_client():
    """Close the Redis client connections"""
    global _redis_client
    if _redis_client:
        logger.info("Closing Redis client connections...")
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis client connections closed")

def _decode_entry(entry_id:Any, fields:Any) -> StreamMessage:
    if not isinstance(fields, dict) or "key" not in fields:
        # Kept with an empty key so readers still move past it
        logger.warning(f"Stream entry {entry_id} has no key field: {fields}")
        return StreamMessage(entry_id = str(entry_id), key = "", value = "")
    return StreamMessage(entry_id = str(entry_id), key = str(fields["key"]),
                         value = str(fields.get("value", "")))

async def read_stream_messages(client:redis.Redis, stream:str, last_id:str = "$",
                               count:int = 10, block_ms:int = 2000) -> List[StreamMessage]:
    """
    Reads the entries appended to a stream after `last_id`.

    Args:
        client: Redis client created with decode_responses=True.
        stream: Stream name.
        last_id: Id of the last entry already read ("$" for only new entries).
        count: Maximum number of entries returned.
        block_ms: How long to wait for new entries.

    Returns:
        Decoded messages in stream order, empty if none arrived.

    Raises:
        redis.RedisError: If the read fails.
    """
    response = await client.xread({stream: last_id}, count = count, block = block_ms)
    messages = []
    for _, entries in response or []:
        for entry_id, fields in entries:
            messages.append(_decode_entry(entry_id, fields))
    if messages:
        logger.debug(f"Read {len(messages)} entries from stream '{stream}'")
    return messages

@async_retry(retries=2, delay_seconds=0.5, exceptions = (redis.RedisError,))
async def publish_stream_message(client:redis.Redis, stream:str, key:str, value:str) -> Optional[str]:
    """Appends a key/value entry to the stream, returning the new entry id (None once retries are exhausted)"""
    try:
        entry_id = await client.xadd(stream, {"key": key, "value": value})
        logger.debug(f"Published '{key}' to stream '{stream}' as {entry_id}")
        return entry_id
    except redis.RedisError as e:
        logger.error(f"Redis error publishing '{key}' to stream '{stream}': {e}")
        raise # Re-raise for retry decorator
