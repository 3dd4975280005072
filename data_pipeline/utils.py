"""
Common utility functions for the data pipeline and the query service.

Includes helpers for configuration, logging, timing, retries, credential
rotation and data conversion.
"""
import asyncio
import logging
import threading
import time
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Coroutine, List, Optional, Sequence, TypeVar, ParamSpec, Union
from datetime import datetime, timezone, timedelta
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Constant
MIN_LATITUDE, MAX_LATITUDE = -90.0, 90.0
MIN_LONGITUDE, MAX_LONGITUDE = -180.0, 180.0

def get_env_var(var_name:str, default:Optional[str] = None) -> Optional[str]:
    """Retrieves an environment variable"""
    value = os.getenv(var_name, default)
    if value is None:
        logger.warning(f"Enviroment variable '{var_name}' not set")
    return value

def get_env_int(var_name:str, default:int) -> int:
    """Retrieves an integer environment variable, falling back to default if unset or invalid"""
    value = safe_int(os.getenv(var_name), None)
    if value is None:
        return default
    return value

def get_env_list(var_name:str, separator:str = ",") -> List[str]:
    """Retrieves a separated list from an environment variable, empty entries dropped"""
    raw = os.getenv(var_name, "")
    return [item.strip() for item in raw.split(separator) if item.strip()]

def setup_logging(log_level:str = "INFO",
                  log_file:Optional[Union[str, Path]] = None,
                  log_to_console:bool = True) -> logging.Logger:
    """
    Configures root logging handlers for the service.

    Args:
        log_level: The logging level (e.g., 'DEBUG', 'INFO').
        log_file: Optional path to a file to save logs.
        log_to_console: Whether to also log messages to the console.

    Returns:
        The configured root logger instance.
    """
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        return root_logger

    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    handlers:List[logging.Handler] = []
    if log_to_console:
        handlers.append(logging.StreamHandler())
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a"))

    logging.basicConfig(level=numeric_level,
                        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                        datefmt="%Y-%m-%d %H:%M:%S", handlers=handlers, force=True)
    root_logger.info(f"Logging setup complete. Level: {log_level}, File: {log_file}, Console: {log_to_console}")
    return root_logger

def async_retry(retries:int = 3, delay_seconds:float=1.0, backoff_factor:float=2.0,
                exceptions: tuple[type[Exception], ...] = (Exception, ),
                ) -> Callable[[Callable[P, Coroutine[Any, Any, T]]],
                               Callable[P, Coroutine[Any, Any, Optional[T]]]]:
    """
    Decorator for automatically retrying an async function if it raises specific exceptions.

    Args:
        retries: Maximum number of retries.
        delay_seconds: Initial delay between retries.
        backoff_factor: Multiplier for delay increase (exponential backoff).
        exceptions: Tuple of exception types to catch and retry on.

    Returns:
        A decorator function. The wrapped function returns None once every attempt failed.
    """
    def decorator(func:Callable[P, Coroutine[Any, Any, T]]) -> Callable[P, Coroutine[Any, Any, Optional[T]]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Optional[T]:
            current_delay = delay_seconds
            for attempt in range(retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == retries:
                        logger.error(f"Function '{func.__name__}' failed after {retries + 1} attempts. Error: {e}",
                                     exc_info = True)
                        return None
                    logger.warning(f"Attempt {attempt + 1}/{retries + 1} failed for '{func.__name__}'. Error: {e}. "
                                   f"Retrying in {current_delay:.2f} seconds...")
                    await asyncio.sleep(current_delay)
                    current_delay *= backoff_factor
            return None
        return wrapper
    return decorator

class KeyRotator:
    """
    Hands out API keys round robin.

    The index is shared by every request a client makes, possibly from
    concurrent queries, so it is only read and advanced under a lock.
    """
    def __init__(self, keys:Sequence[str]):
        self._keys = tuple(keys)
        self._index = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._keys)

    def next_key(self) -> Optional[str]:
        """Returns the next key, or None if no keys are configured"""
        if not self._keys:
            return None
        with self._lock:
            self._index += 1
            return self._keys[self._index % len(self._keys)]

def parse_flexible_timestamp(ts_data:Any) -> Optional[datetime]:
    """Attempts to parse various timestamp formats into a timezone-aware UTC datetime"""
    if isinstance(ts_data, datetime):
        if ts_data.tzinfo is None:
            return ts_data.replace(tzinfo = timezone.utc)
        return ts_data.astimezone(timezone.utc)
    if isinstance(ts_data, (int, float)):
        try:
            return datetime.fromtimestamp(ts_data, tz=timezone.utc)
        except (ValueError, OSError):
            logger.debug(f"Could not parse numeric timestamp: {ts_data}")
            return None
    if isinstance(ts_data, str):
        try:
            # Attempt ISO format
            dt = datetime.fromisoformat(ts_data.replace("Z", "+00:00"))
            if dt.tzinfo is None:
                return dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc)
        except ValueError:
            logger.debug(f"Could not parse string timestamp: {ts_data}")
            return None
    return None

def journey_duration_hours(departure:Any, arrival:Any) -> Optional[float]:
    """
    Duration between two timestamps in hours.

    A single leg is assumed to last less than 24 hours, so an arrival earlier
    than the departure is taken as the next day.
    """
    departure_dt = parse_flexible_timestamp(departure)
    arrival_dt = parse_flexible_timestamp(arrival)
    if departure_dt is None or arrival_dt is None:
        return None
    duration = arrival_dt - departure_dt
    if duration < timedelta(0):
        duration += timedelta(days=1)
    return duration.total_seconds() / 3600

def safe_float(value:Any, default:Optional[float] = None) -> Optional[float]:
    """Safely converts a value to a float, returning default on failure"""
    try:
        return float(value)
    except (ValueError, TypeError):
        return default

def safe_int(value:Any, default:Optional[int] = None) -> Optional[int]:
    """Safely converts a value to int, returning default on failure"""
    try:
        return int(value)
    except (ValueError, TypeError):
        return default

# For performance measurement
def time_it(func:Callable[P, T]) -> Callable[P, T]:
    """Simple decorator to measure and log the execution time of a synchronous function"""
    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        start_time = time.perf_counter()
        result = func(*args, **kwargs)
        end_time = time.perf_counter()
        logger.debug(f"Function '{func.__name__}' executed in {end_time - start_time:.4f} seconds")
        return result
    return wrapper

def time_it_async(func:Callable[P, Coroutine[Any, Any, T]]) -> Callable[P, Coroutine[Any, Any, T]]:
    """Simple decorator to measure and log the execution time of an asynchronous function"""
    @wraps(func)
    async def wrapper(*args:P.args, **kwargs:P.kwargs) -> T:
        start_time = time.perf_counter()
        result = await func(*args, **kwargs)
        end_time = time.perf_counter()
        logger.debug(f"Async function '{func.__name__}' executed in {end_time - start_time:.4f} seconds")
        return result
    return wrapper
