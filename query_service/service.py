"""
Trip query service.

Listens to the trip stream for "input-<userId>" entries, plans each query
and appends the rendered answer as "output-<userId>" to the same stream.
"""
import asyncio
import logging
from typing import List, Optional

import httpx
import redis.asyncio as redis

from . import config
from data_pipeline.api_clients import (GeoDBClient, SkyscannerClient, FlixBusClient,
                                       TransportLegProvider)
from data_pipeline.data_storage import StreamMessage, read_stream_messages, publish_stream_message
from data_pipeline.data_validator import InvalidQueryError, parse_trip_query
from data_pipeline.utils import KeyRotator
from journey_optimizer.optimizer import QUERY_ERROR_MESSAGE, TripLegProvider, plan_trip, render_plan

logger = logging.getLogger(__name__)

# Pause after a failed stream read before trying again
READ_ERROR_BACKOFF_SECONDS = 1.0

def build_provider(session:httpx.AsyncClient) -> TransportLegProvider:
    """Creates the provider stack from configuration. The key rotator lives as long as the provider."""
    geo_client = GeoDBClient(session, config.GEO_API_KEY,
                             radius_km = config.GEODB_RADIUS_KM,
                             limit = config.GEODB_LIMIT,
                             min_population = config.GEODB_MIN_POPULATION,
                             sort = config.GEODB_SORT,
                             max_retries = config.PROVIDER_MAX_RETRIES)
    if not config.SKYSCANNER_API_KEYS:
        logger.warning("No Skyscanner API keys configured. Flight requests will likely be rejected")
    skyscanner_client = SkyscannerClient(session, KeyRotator(config.SKYSCANNER_API_KEYS),
                                         currency = config.SKYSCANNER_CURRENCY,
                                         locale = config.SKYSCANNER_LOCALE,
                                         max_retries = config.PROVIDER_MAX_RETRIES)
    flixbus_client = FlixBusClient(session, max_retries = config.PROVIDER_MAX_RETRIES)
    return TransportLegProvider(geo_client, [skyscanner_client, flixbus_client])

def parse_user_id(key:str) -> Optional[str]:
    """User id of an "input-<userId>" key, None for any other key"""
    prefix = f"{config.INPUT_KEY_PREFIX}-"
    if not key.startswith(prefix):
        return None
    user_id = key[len(prefix):]
    return user_id or None

class QueryService:
    """
    Consumes trip queries from a Redis stream and publishes the answers.

    Queries of one batch are planned concurrently, at most
    `max_concurrent_queries` at a time. Every query builds its own graph.
    """
    def __init__(self, redis_client:redis.Redis, provider:TripLegProvider,
                 stream:str = config.STREAM_NAME,
                 top_n:int = config.TOP_N,
                 max_hops:int = config.MAX_HOPS,
                 max_itineraries:int = config.MAX_ITINERARIES,
                 max_concurrent_queries:int = config.MAX_CONCURRENT_QUERIES,
                 block_ms:int = config.CONSUMER_BLOCK_MS,
                 batch_size:int = config.READ_BATCH_SIZE):
        self.redis_client = redis_client
        self.provider = provider
        self.stream = stream
        self.top_n = top_n
        self.max_hops = max_hops
        self.max_itineraries = max_itineraries
        self.block_ms = block_ms
        self.batch_size = batch_size
        self._semaphore = asyncio.Semaphore(max_concurrent_queries)
        self._running = False

    async def answer(self, raw_query:str) -> str:
        """Plans a raw JSON query and returns the text to send back"""
        try:
            query = parse_trip_query(raw_query)
        except InvalidQueryError as e:
            logger.error(f"Rejected malformed query: {e}")
            return QUERY_ERROR_MESSAGE
        async with self._semaphore:
            try:
                plan = await plan_trip(query, self.provider, max_hops = self.max_hops,
                                       max_itineraries = self.max_itineraries)
            except Exception as e:
                logger.error(f"Unexpected error planning query {raw_query}: {e}", exc_info = True)
                return QUERY_ERROR_MESSAGE
        return render_plan(plan, n = self.top_n)

    async def handle_message(self, message:StreamMessage) -> Optional[str]:
        """
        Answers one stream entry.

        Returns:
            The published answer, or None if the entry is not a query.
        """
        user_id = parse_user_id(message.key)
        if user_id is None:
            logger.debug(f"Ignoring stream entry {message.entry_id} with key '{message.key}'")
            return None
        logger.info(f"Processing query {message.entry_id} from user {user_id}")
        logger.debug(f"Raw query: {message.value}")
        answer = await self.answer(message.value)
        output_key = f"{config.OUTPUT_KEY_PREFIX}-{user_id}"
        entry_id = await publish_stream_message(self.redis_client, self.stream, output_key, answer)
        if entry_id is None:
            logger.error(f"Could not publish answer for user {user_id}")
        return answer

    async def process_batch(self, messages:List[StreamMessage]) -> List[Optional[str]]:
        """Answers a batch concurrently. A failing entry is logged and yields None, the rest still publish."""
        results = await asyncio.gather(*(self.handle_message(message) for message in messages),
                                       return_exceptions = True)
        answers:List[Optional[str]] = []
        for message, result in zip(messages, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to handle stream entry {message.entry_id} ({message.key}): {result}",
                             exc_info = result)
                answers.append(None)
            else:
                answers.append(result)
        return answers

    async def run(self, last_id:str = "$") -> None:
        """Consumes the stream until stop() is called"""
        self._running = True
        logger.info(f"Listening for trip queries on stream '{self.stream}'")
        while self._running:
            try:
                messages = await read_stream_messages(self.redis_client, self.stream, last_id,
                                                      count = self.batch_size, block_ms = self.block_ms)
            except redis.RedisError as e:
                logger.error(f"Failed to read stream '{self.stream}': {e}")
                await asyncio.sleep(READ_ERROR_BACKOFF_SECONDS)
                continue
            if not messages:
                continue
            last_id = messages[-1].entry_id
            await self.process_batch(messages)
        logger.info("Trip query service stopped")

    def stop(self) -> None:
        self._running = False
