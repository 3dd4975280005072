"""
Core trip planning logic.

Resolves the query coordinates into origin, destination and transit cities,
builds and prunes the trip graph, searches it and ranks the itineraries.
Also renders the ranked itineraries as the text answer sent back to users.
"""

import logging
from typing import List, Optional, Protocol, Sequence, Tuple

from .models import PlanStatus, TripPlan, TripQuery
from routing_engine.models import City, Itinerary, Location
from routing_engine import graph_builder
from routing_engine.router import ItinerarySearch, DEFAULT_MAX_HOPS, DEFAULT_MAX_ITINERARIES

logger = logging.getLogger(__name__)

# Constants
DEFAULT_TOP_N = 5
CURRENCY = "EUR"
QUERY_ERROR_MESSAGE = "Ups! There was some error in the query..."
NO_ROUTES_MESSAGE = "Sorry, no routes were found for the received dates and configuration..."
TRUNCATED_NOTE = "Note: the search was truncated, more routes may exist."

class LocationResolver(Protocol):
    """Anything able to turn coordinates into nearby cities, closest anchor city first"""
    async def resolve_cities(self, location:Location) -> List[City]:
        ...

class TripLegProvider(graph_builder.LegProvider, LocationResolver, Protocol):
    """Collaborator providing both city resolution and legs"""

# Helper Functions
def split_cities(origin_candidates:Sequence[City],
                 destination_candidates:Sequence[City]) -> Tuple[Optional[City], Optional[City], List[City]]:
    """
    Divides resolved cities into three categories:
    1. Origin city: first non transit city found near the origin coordinates.
    2. Destination city: first non transit city found near the destination coordinates.
    3. Transit cities: every transit city found near either end, once per name,
       excluding the origin and destination themselves.
    """
    origin = next((city for city in origin_candidates if not city.is_transit), None)
    destination = next((city for city in destination_candidates if not city.is_transit), None)
    endpoint_names = {city.name for city in (origin, destination) if city is not None}
    transit_cities = {}
    for city in list(origin_candidates) + list(destination_candidates):
        if city.is_transit and city.name not in endpoint_names:
            transit_cities.setdefault(city.name, city)
    return origin, destination, list(transit_cities.values())

def rank_itineraries(itineraries:Sequence[Itinerary]) -> List[Itinerary]:
    """Cheapest first. Equal prices put the longest itinerary first."""
    return sorted(itineraries, key=lambda itinerary: (itinerary.total_price, -itinerary.total_time))

def _stops_string(itinerary:Itinerary) -> str:
    return " => ".join(itinerary.city_names)

def format_top_itineraries(itineraries:Sequence[Itinerary], origin_name:str, destination_name:str,
                           n:int = DEFAULT_TOP_N, truncated:bool = False) -> str:
    """
    Renders the first n (already ranked) itineraries, one line each.

    Returns the fixed no routes message if there is nothing to render.
    """
    if not itineraries:
        output = NO_ROUTES_MESSAGE
        if truncated:
            output += f"\n{TRUNCATED_NOTE}"
        return output
    lines = [f"Routes found to travel from {origin_name} to {destination_name}:"]
    for index, itinerary in enumerate(itineraries[:n]):
        lines.append(f"\tRoute {index + 1} | Stops: {_stops_string(itinerary)} | "
                     f"Total Price: {itinerary.total_price:.2f} {CURRENCY} | "
                     f"Total Time: {itinerary.total_time:.2f} hours")
    if truncated:
        lines.append(TRUNCATED_NOTE)
    return "\n".join(lines) + "\n"

def render_plan(plan:TripPlan, n:int = DEFAULT_TOP_N) -> str:
    """Text answer for a plan: the ranked routes, the no routes message or the query error message"""
    if plan.status == PlanStatus.NO_ROUTE:
        return QUERY_ERROR_MESSAGE
    return format_top_itineraries(plan.itineraries, plan.origin_name, plan.destination_name, n = n,
                                  truncated = plan.status == PlanStatus.TRUNCATED)

async def plan_trip(query:TripQuery, provider:TripLegProvider,
                    max_hops:int = DEFAULT_MAX_HOPS,
                    max_itineraries:int = DEFAULT_MAX_ITINERARIES) -> TripPlan:
    """
    Plans one trip query end to end.

    Args:
        query: The validated trip query.
        provider: Collaborator resolving cities and fetching legs.
        max_hops: Maximum number of legs per itinerary.
        max_itineraries: Maximum number of itineraries collected before stopping.

    Returns:
        A TripPlan with ranked itineraries. Status NO_ROUTE means the origin or
        destination could not be resolved and no graph was built.
    """
    # 1. Find nearby cities (used as transit stops to make the trip cheaper)
    logger.info(f"Planning trip from {query.origin} to {query.destination} on {query.departure_date}")
    origin_candidates = await provider.resolve_cities(query.origin)
    destination_candidates = await provider.resolve_cities(query.destination)
    origin, destination, transit_cities = split_cities(origin_candidates, destination_candidates)
    if origin is None or destination is None:
        logger.warning("No possible route: origin or destination city could not be resolved")
        return TripPlan(status = PlanStatus.NO_ROUTE)
    logger.info(f"Origin city: {origin.name}, destination city: {destination.name}, "
                f"transit cities: {[city.name for city in transit_cities]}")

    # 2. Build and prune the graph
    graph = await graph_builder.build_trip_graph(origin, destination, transit_cities,
                                                 query.departure_date, provider)
    graph = graph_builder.filter_reachable(graph)
    logger.debug(f"Pruned trip graph:\n{graph.describe()}")

    # 3. Search and rank
    search = ItinerarySearch(graph, price_range = query.price_range,
                             time_range = query.time_travel_range,
                             max_hops = max_hops, max_itineraries = max_itineraries)
    result = search.find_itineraries()
    ranked = rank_itineraries(result.itineraries)
    if result.truncated:
        status = PlanStatus.TRUNCATED
        logger.warning(f"Search truncated for {origin.name} -> {destination.name}, "
                       f"{len(ranked)} itineraries kept")
    elif ranked:
        status = PlanStatus.FOUND
    else:
        status = PlanStatus.NO_ITINERARIES
    logger.info(f"Planned {origin.name} -> {destination.name}: {len(ranked)} itineraries ({status.value})")
    return TripPlan(status = status, origin_name = origin.name, destination_name = destination.name,
                    itineraries = ranked, graph = graph)
