"""
Enumerates the itineraries of a pruned trip graph.

Exhaustive depth-first search from every station of the origin city to any
station of the destination city, filtered by optional price and travel time
bounds.
"""
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Set

from .models import Itinerary, Leg, SearchResult, SearchStatus, Station, TripGraph

logger = logging.getLogger(__name__)

# Constants
# Longest itinerary explored, in legs. Paths needing more legs are abandoned
# and the search is reported as truncated.
DEFAULT_MAX_HOPS = 4
# Complete itineraries collected before the search stops
DEFAULT_MAX_ITINERARIES = 10000

def _bounds(value_range:Optional[Sequence[float]]) -> Optional[tuple]:
    """Returns (min, max) when exactly two values were given, None otherwise"""
    if value_range is None or len(value_range) != 2:
        return None
    return float(value_range[0]), float(value_range[1])

class ItinerarySearch:
    """
    Finds every itinerary between the origin and destination cities of a graph.

    An itinerary never visits the same station twice, so cycles left in the
    pruned graph cannot make the search loop.
    """
    def __init__(self, graph:TripGraph,
                 price_range:Optional[Sequence[float]] = None,
                 time_range:Optional[Sequence[float]] = None,
                 max_hops:int = DEFAULT_MAX_HOPS,
                 max_itineraries:int = DEFAULT_MAX_ITINERARIES):
        """
        Args:
            graph: A trip graph, normally already pruned with filter_reachable.
            price_range: [min, max] total price in EUR, ignored unless it has two values.
            time_range: [min, max] total time in hours, ignored unless it has two values.
            max_hops: Maximum number of legs per itinerary.
            max_itineraries: Maximum number of complete itineraries collected.
        """
        if max_hops < 1:
            raise ValueError(f"max_hops must be at least 1 (got {max_hops})")
        if max_itineraries < 1:
            raise ValueError(f"max_itineraries must be at least 1 (got {max_itineraries})")
        self.graph = graph
        self.price_bounds = _bounds(price_range)
        self.time_bounds = _bounds(time_range)
        self.max_hops = max_hops
        self.max_itineraries = max_itineraries
        self.outgoing_by_station:Dict[str, List[Leg]] = defaultdict(list)
        for leg in graph.edges:
            self.outgoing_by_station[leg.origin.id].append(leg)
        self._found = 0
        self._truncated = False

    def _within_bounds(self, itinerary:Itinerary) -> bool:
        if self.price_bounds is not None:
            min_price, max_price = self.price_bounds
            if not min_price <= itinerary.total_price <= max_price:
                return False
        if self.time_bounds is not None:
            min_time, max_time = self.time_bounds
            if not min_time <= itinerary.total_time <= max_time:
                return False
        return True

    def _explore(self, current:Station, partial:Itinerary, path_station_ids:Set[str],
                 destination_ids:Set[str]) -> List[Itinerary]:
        """Returns the complete in-bounds itineraries having `partial` as prefix"""
        candidates:List[Itinerary] = []
        for leg in self.outgoing_by_station.get(current.id, []):
            if self._found >= self.max_itineraries:
                self._truncated = True
                break
            next_station = leg.destination
            if next_station.id in path_station_ids:
                continue
            extended = partial.extend(leg)
            if next_station.id in destination_ids:
                if self._within_bounds(extended):
                    candidates.append(extended)
                    self._found += 1
                continue
            if len(extended.legs) >= self.max_hops:
                # Only legs to stations not yet on the path could have led further
                if any(onward.destination.id not in path_station_ids and onward.destination.id != next_station.id
                       for onward in self.outgoing_by_station.get(next_station.id, [])):
                    logger.debug(f"Hop cap {self.max_hops} reached at station {next_station.id}")
                    self._truncated = True
                continue
            path_station_ids.add(next_station.id)
            candidates.extend(self._explore(next_station, extended, path_station_ids, destination_ids))
            path_station_ids.discard(next_station.id)
        return candidates

    def find_itineraries(self) -> SearchResult:
        """
        Runs the search once per origin city station and concatenates the results.

        Returns:
            A SearchResult. Its status is TRUNCATED if a cap stopped the search,
            in which case the itineraries found so far are kept.
        """
        self._found = 0
        self._truncated = False
        origin_stations = self.graph.city_stations(self.graph.origin.name)
        destination_ids = {station.id for station in self.graph.city_stations(self.graph.destination.name)}
        if not origin_stations or not destination_ids:
            logger.info("Origin or destination city has no reachable station, no itineraries")
            return SearchResult()

        itineraries:List[Itinerary] = []
        for origin_station in origin_stations:
            itineraries.extend(self._explore(origin_station, Itinerary(), {origin_station.id}, destination_ids))
        status = SearchStatus.TRUNCATED if self._truncated else SearchStatus.COMPLETE
        logger.info(f"Itinerary search from {len(origin_stations)} origin stations found "
                    f"{len(itineraries)} itineraries (status={status.value})")
        return SearchResult(itineraries = itineraries, status = status)
