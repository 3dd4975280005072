"""
Validates trip query payloads received from the input stream.

Checks for schema compliance (required fields, value types and ranges)
before a payload is turned into a TripQuery and handed to the planner.
"""
import json
import logging
import math
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from journey_optimizer.models import TripQuery
from routing_engine.models import Location
from .utils import safe_float, MIN_LATITUDE, MAX_LATITUDE, MAX_LONGITUDE, MIN_LONGITUDE

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("src", "dst", "departureDate")
RANGE_FIELDS = ("priceRange", "timeTravelRange")

class InvalidQueryError(ValueError):
    """Raised when a trip query payload cannot be turned into a TripQuery"""
    def __init__(self, errors:List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))

def parse_coordinates(raw:Any) -> Optional[Location]:
    """Parses a 'lat,lon' string into a Location, None if malformed or out of range"""
    if not isinstance(raw, str):
        return None
    parts = raw.split(",")
    if len(parts) != 2:
        return None
    latitude, longitude = safe_float(parts[0].strip()), safe_float(parts[1].strip())
    if latitude is None or longitude is None:
        return None
    if not (MIN_LATITUDE <= latitude <= MAX_LATITUDE and MIN_LONGITUDE <= longitude <= MAX_LONGITUDE):
        return None
    return Location(latitude = latitude, longitude = longitude)

def _parse_date(raw:Any) -> Optional[date]:
    if not isinstance(raw, str):
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None

def _as_float(value:Any) -> Optional[float]:
    # Integers too large for a float overflow instead of failing the type check
    try:
        return float(value)
    except (OverflowError, TypeError, ValueError):
        return None

def _validate_range(name:str, raw:Any, errors:List[str], warnings:List[str]) -> None:
    if raw is None:
        return
    if not isinstance(raw, list):
        errors.append(f"'{name}' must be a list of numbers (got {type(raw).__name__})")
        return
    # bool is an int subclass, but true/false are not bounds
    if any(isinstance(value, bool) or not isinstance(value, (int, float)) for value in raw):
        errors.append(f"'{name}' must only contain numbers (got {raw})")
        return
    bounds = [_as_float(value) for value in raw]
    if any(bound is None or not math.isfinite(bound) for bound in bounds):
        errors.append(f"'{name}' values must be finite numbers (got {raw})")
        return
    if any(bound < 0 for bound in bounds):
        errors.append(f"'{name}' values must be non-negative (got {raw})")
        return
    if len(raw) not in (0, 2):
        warnings.append(f"'{name}' has {len(raw)} values, bounds need exactly 2. Ignoring it")
    elif len(bounds) == 2 and bounds[0] > bounds[1]:
        warnings.append(f"'{name}' minimum {raw[0]} is greater than maximum {raw[1]}, nothing will match")

def validate_query_payload(payload:Any) -> Tuple[List[str], List[str]]:
    """
    Validates a decoded trip query payload.

    Args:
        payload: The JSON decoded message value.

    Returns:
        A tuple containing two lists: (errors, warnings).
    """
    errors = []
    warnings = []
    if not isinstance(payload, dict):
        errors.append(f"Query payload is not a JSON object (got {type(payload).__name__})")
        return errors, warnings
    for field_name in REQUIRED_FIELDS:
        if field_name not in payload:
            errors.append(f"Query payload missing required field: '{field_name}'")
    for field_name in ("src", "dst"):
        if field_name in payload and parse_coordinates(payload[field_name]) is None:
            errors.append(f"'{field_name}' is not a valid 'lat,lon' coordinate string: {payload[field_name]!r}")
    if "departureDate" in payload and _parse_date(payload["departureDate"]) is None:
        errors.append(f"'departureDate' is not an ISO date (YYYY-MM-DD): {payload['departureDate']!r}")
    for field_name in RANGE_FIELDS:
        _validate_range(field_name, payload.get(field_name), errors, warnings)

    if errors:
        logger.error(f"Query payload validation found {len(errors)} errors")
    if warnings:
        logger.warning(f"Query payload validation found {len(warnings)} warnings: {warnings}")
    return errors, warnings

def parse_trip_query(raw:str) -> TripQuery:
    """
    Decodes and validates a raw JSON trip query.

    Raises:
        InvalidQueryError: If the payload is not valid JSON or fails validation.
    """
    try:
        payload:Dict[str, Any] = json.loads(raw)
    except (TypeError, ValueError) as e:
        # ValueError also covers integers beyond the conversion digit limit
        raise InvalidQueryError([f"Query payload is not valid JSON: {e}"]) from e
    errors, _ = validate_query_payload(payload)
    if errors:
        raise InvalidQueryError(errors)
    return TripQuery(origin = parse_coordinates(payload["src"]),
                     destination = parse_coordinates(payload["dst"]),
                     departure_date = _parse_date(payload["departureDate"]),
                     price_range = tuple(float(value) for value in payload.get("priceRange") or ()),
                     time_travel_range = tuple(float(value) for value in payload.get("timeTravelRange") or ()))
