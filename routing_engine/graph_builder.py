"""
Builds the per query trip graph from the legs returned by the transport
providers and prunes it down to what can still reach the destination.

Legs are fetched for origin -> destination, origin -> each transit city and
each transit city -> destination. Cities and stations are derived from the legs.
"""
import asyncio
import logging
from collections import defaultdict, deque
from datetime import date
from typing import Deque, Dict, Iterable, List, Protocol, Set

from .models import City, Leg, Station, TripGraph
from data_pipeline.utils import time_it, time_it_async

logger = logging.getLogger(__name__)

class LegProvider(Protocol):
    """Anything able to return the legs between two cities on a date"""
    async def fetch_legs(self, origin:City, destination:City, departure_date:date) -> List[Leg]:
        ...

async def _fetch_all_legs(origin:City, destination:City, transit_cities:List[City],
                          departure_date:date, leg_provider:LegProvider) -> List[List[Leg]]:
    """
    Fetches the leg sets needed for the graph concurrently.

    The returned list always follows the same order (direct, origin -> each
    transit, each transit -> destination) whatever the completion order is.
    """
    tasks = [leg_provider.fetch_legs(origin, destination, departure_date)]
    tasks.extend(leg_provider.fetch_legs(origin, transit, departure_date) for transit in transit_cities)
    tasks.extend(leg_provider.fetch_legs(transit, destination, departure_date) for transit in transit_cities)
    return await asyncio.gather(*tasks)

def _prepare_edges(leg_sets:Iterable[List[Leg]]) -> List[Leg]:
    """Unions the fetched leg sets, keeping the first occurrence of duplicated legs"""
    edges = dict.fromkeys(leg for leg_set in leg_sets for leg in leg_set)
    return list(edges)

def _prepare_nodes(graph:TripGraph) -> None:
    """Creates one city node per city name seen on the legs and fills its stations"""
    endpoint_names = {graph.origin.name, graph.destination.name}
    for leg in graph.edges:
        for station in (leg.origin, leg.destination):
            node = graph.nodes.get(station.city_name)
            if node is None:
                node = City(name = station.city_name,
                            is_transit = station.city_name not in endpoint_names)
                graph.nodes[station.city_name] = node
            node.add_station(station)
            graph.total_places.setdefault(station.id, station)

@time_it_async
async def build_trip_graph(origin:City, destination:City, transit_cities:List[City],
                           departure_date:date, leg_provider:LegProvider) -> TripGraph:
    """
    Builds the full (unpruned) trip graph for one query.

    Args:
        origin: Anchor city close to the origin coordinates.
        destination: Anchor city close to the destination coordinates.
        transit_cities: Candidate intermediate cities.
        departure_date: Date the trip starts.
        leg_provider: Collaborator returning legs between two cities.

    Returns:
        A TripGraph. It has no nodes nor edges if no provider returned data.
    """
    logger.info(f"Building trip graph {origin.name} -> {destination.name} on {departure_date} "
                f"with {len(transit_cities)} transit candidates")
    graph = TripGraph(origin = origin, destination = destination)
    leg_sets = await _fetch_all_legs(origin, destination, transit_cities, departure_date, leg_provider)
    graph.edges = _prepare_edges(leg_sets)
    _prepare_nodes(graph)
    logger.info(f"Trip graph built: {len(graph.nodes)} cities, {len(graph.total_places)} stations, "
                f"{len(graph.edges)} legs")
    return graph

@time_it
def filter_reachable(graph:TripGraph) -> TripGraph:
    """
    Keeps only the legs and stations that can reach the destination city.

    Runs a breadth-first traversal backwards from every destination station
    following incoming legs. The graph is modified in place and returned.
    """
    incoming_by_station:Dict[str, List[Leg]] = defaultdict(list)
    for leg in graph.edges:
        incoming_by_station[leg.destination.id].append(leg)

    destination_stations = graph.city_stations(graph.destination.name)
    queue:Deque[Station] = deque(destination_stations)
    visited:Dict[str, Station] = {station.id: station for station in destination_stations}
    expanded:Set[str] = set()
    retained_legs:Set[Leg] = set()

    while queue:
        current = queue.popleft()
        # A station may be queued more than once, it is only expanded once
        if current.id in expanded:
            continue
        expanded.add(current.id)
        for leg in incoming_by_station.get(current.id, []):
            retained_legs.add(leg)
            visited.setdefault(leg.origin.id, leg.origin)
            queue.append(leg.origin)

    removed = len(graph.edges) - len(retained_legs)
    graph.edges = [leg for leg in graph.edges if leg in retained_legs]
    graph.total_places = {station_id: station for station_id, station in graph.total_places.items()
                          if station_id in visited}
    kept_nodes:Dict[str, City] = {}
    for name, node in graph.nodes.items():
        node.stations = {station_id: station for station_id, station in node.stations.items()
                         if station_id in visited}
        if node.stations:
            kept_nodes[name] = node
    graph.nodes = kept_nodes
    logger.info(f"Reachability filter kept {len(graph.edges)} legs ({removed} removed), "
                f"{len(graph.total_places)} stations, {len(graph.nodes)} cities")
    return graph
