"""
Configuration settings for the trip query service.

Centralizes the message channel, engine caps and provider credentials.
Values come from the environment (a .env file is loaded by data_pipeline.utils).
"""

from data_pipeline.utils import get_env_var, get_env_int, get_env_list

# --- Message channel ---
REDIS_URL = get_env_var("REDIS_URL", "redis://localhost:6379/0")
# Stream used both for incoming queries and outgoing answers
STREAM_NAME = get_env_var("TRIP_STREAM", "travel")
CONSUMER_BLOCK_MS = get_env_int("TRIP_CONSUMER_BLOCK_MS", 2000)
READ_BATCH_SIZE = get_env_int("TRIP_READ_BATCH", 10)
INPUT_KEY_PREFIX = "input"
OUTPUT_KEY_PREFIX = "output"

# --- Engine ---
TOP_N = get_env_int("TRIP_TOP_N", 5)
MAX_HOPS = get_env_int("TRIP_MAX_HOPS", 4)
MAX_ITINERARIES = get_env_int("TRIP_MAX_ITINERARIES", 10000)
MAX_CONCURRENT_QUERIES = get_env_int("TRIP_MAX_CONCURRENT_QUERIES", 4)

# --- Providers ---
GEO_API_KEY = get_env_var("GEO_API_KEY", "")
# Comma separated pool, rotated per request to spread the rate limits
SKYSCANNER_API_KEYS = get_env_list("SKYSCANNER_API_KEYS")
GEODB_RADIUS_KM = get_env_int("GEODB_RADIUS_KM", 200)
GEODB_LIMIT = get_env_int("GEODB_LIMIT", 5)
GEODB_MIN_POPULATION = get_env_int("GEODB_MIN_POPULATION", 100000)
GEODB_SORT = "-population"
SKYSCANNER_CURRENCY = "EUR"
SKYSCANNER_LOCALE = "en-GB"
PROVIDER_MAX_RETRIES = get_env_int("PROVIDER_MAX_RETRIES", 3)

# --- Logging ---
LOG_LEVEL = get_env_var("LOG_LEVEL", "INFO")
LOG_FILE = get_env_var("LOG_FILE", "") or None
