"""
Data models specific to the trip planning process.

Includes the typed trip query and the outcome of planning one query.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional, List, Tuple
from routing_engine.models import Itinerary, Location, TripGraph


class PlanStatus(Enum):
    """Outcome of planning one trip query."""
    FOUND = "FOUND"
    NO_ITINERARIES = "NO_ITINERARIES" # Graph built but nothing matched
    TRUNCATED = "TRUNCATED" # Search stopped by a cap, partial results
    NO_ROUTE = "NO_ROUTE" # Origin or destination city could not be resolved

@dataclass(frozen=True)
class TripQuery:
    """A validated trip request."""
    origin: Location
    destination: Location
    departure_date: date
    # Bounds only apply when they hold exactly two values
    price_range: Tuple[float, ...] = ()
    time_travel_range: Tuple[float, ...] = ()
    def __post_init__(self):
        for name, value_range in (("price_range", self.price_range),
                                  ("time_travel_range", self.time_travel_range)):
            if any(value < 0 for value in value_range):
                raise ValueError(f"{name} values must be non-negative (got {value_range})")

@dataclass
class TripPlan:
    """Ranked itineraries for a query, along with how the planning ended."""
    status: PlanStatus
    origin_name: Optional[str] = None
    destination_name: Optional[str] = None
    itineraries: List[Itinerary] = field(default_factory=list) # Already ranked
    graph: Optional[TripGraph] = None
