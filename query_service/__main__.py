"""
Entry point: python -m query_service [stream_name]
"""
import argparse
import asyncio
import logging

import httpx

from . import config
from .service import QueryService, build_provider
from data_pipeline.data_storage import get_redis_client, close_redis_client
from data_pipeline.utils import setup_logging

logger = logging.getLogger(__name__)

async def main(stream:str) -> None:
    redis_client = await get_redis_client(config.REDIS_URL)
    try:
        async with httpx.AsyncClient() as session:
            service = QueryService(redis_client, build_provider(session), stream = stream)
            await service.run()
    finally:
        await close_redis_client()

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Trip generator query service")
    parser.add_argument("stream", nargs="?", default=config.STREAM_NAME,
                        help="Redis stream carrying input and output messages")
    args = parser.parse_args()
    setup_logging(config.LOG_LEVEL, config.LOG_FILE)
    try:
        asyncio.run(main(args.stream))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
