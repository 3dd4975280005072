"""
Data models for representing the trip graph components (cities, stations,
legs), the itineraries found on it, and the outcome of a search.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Tuple

class TransportType(Enum):
    """Transport provider a station or leg was obtained from"""
    SKYSCANNER = "SkyScanner" # Flights
    FLIXBUS = "FlixBus" # Buses

@dataclass(frozen = True)
class Location:
    """Represents a geographic coordinate"""
    latitude:float
    longitude:float

    def to_iso6709(self) -> str:
        """Formats the coordinate as used by GeoDB location paths (e.g. +40.4168-003.7038)"""
        return f"{self.latitude:+.4f}{self.longitude:+.4f}"

@dataclass(frozen=True)
class Station:
    """
    Provider specific boarding point ("place") within a city.

    Identity is the provider id only: the same station found through
    different queries is the same station even if name or city differ.
    """
    id:str
    name:str = field(default="", compare=False)
    transport_type:TransportType = field(default=TransportType.SKYSCANNER, compare=False)
    city_name:str = field(default="", compare=False)

@dataclass(eq=False)
class City:
    """
    City close to some queried coordinates.

    Identity is the name only, so partial records built while walking legs
    merge into a single node.
    """
    name:str
    country_code:Optional[str] = None
    is_transit:bool = False
    stations:Dict[str, Station] = field(default_factory=dict) # station id -> Station

    def __eq__(self, other:object) -> bool:
        if not isinstance(other, City):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)

    def add_station(self, station:Station) -> None:
        """Adds a station unless one with the same id is already known"""
        self.stations.setdefault(station.id, station)

    def has_station(self, station:Station) -> bool:
        return station.id in self.stations

@dataclass(frozen=True)
class Leg:
    """A single directed, priced and timed segment between two stations"""
    origin:Station
    destination:Station
    is_direct:bool
    transport_type:TransportType
    price:float # EUR
    time:float # Hours
    departure_datetime:str
    arrival_datetime:str

    def __post_init__(self):
        if self.price < 0 or self.time < 0:
            raise ValueError(f"Leg price and time must be non-negative (got {self.price}, {self.time})")

@dataclass(frozen=True)
class Itinerary:
    """A chain of legs from an origin station to a destination station"""
    legs:Tuple[Leg, ...] = ()
    total_time:float = 0.0 # Hours
    total_price:float = 0.0 # EUR

    def extend(self, leg:Leg) -> "Itinerary":
        """Returns a new itinerary with `leg` appended and the totals updated"""
        return Itinerary(legs = self.legs + (leg,),
                         total_time = self.total_time + leg.time,
                         total_price = self.total_price + leg.price)

    @property
    def stations(self) -> List[Station]:
        """Stations traversed in order, starting with the first origin"""
        if not self.legs:
            return []
        return [self.legs[0].origin] + [leg.destination for leg in self.legs]

    @property
    def city_names(self) -> List[str]:
        return [station.city_name for station in self.stations]

class SearchStatus(Enum):
    """Outcome of an itinerary search"""
    COMPLETE = "COMPLETE"
    TRUNCATED = "TRUNCATED" # A hop or itinerary cap stopped the exploration early

@dataclass
class SearchResult:
    """Itineraries found by a search plus whether the search finished"""
    itineraries:List[Itinerary] = field(default_factory=list)
    status:SearchStatus = SearchStatus.COMPLETE

    @property
    def truncated(self) -> bool:
        return self.status == SearchStatus.TRUNCATED

# Per query working graph

@dataclass
class TripGraph:
    """Cities (nodes), legs (edges) and every station seen for one query"""
    origin:City
    destination:City
    nodes:Dict[str, City] = field(default_factory=dict) # city name -> City
    edges:List[Leg] = field(default_factory=list)
    total_places:Dict[str, Station] = field(default_factory=dict) # station id -> Station

    @property
    def is_empty(self) -> bool:
        return not self.edges

    def city_stations(self, city_name:str) -> List[Station]:
        """Stations of the node with that name, or an empty list if it is not in the graph"""
        node = self.nodes.get(city_name)
        return list(node.stations.values()) if node else []

    def describe(self) -> str:
        """Human readable dump of nodes and outgoing legs per city, used in debug logs"""
        lines = ["**Nodes**"]
        for node in self.nodes.values():
            station_ids = ", ".join(node.stations)
            lines.append(f"\t{node.name} (transit={node.is_transit}) [{station_ids}]")
        lines.append("")
        lines.append("**Edges**")
        for node in self.nodes.values():
            if node.name == self.destination.name:
                continue
            lines.append(f"\t*Outgoing legs from node {node.name}*")
            for leg in self.edges:
                if leg.origin.city_name != node.name:
                    continue
                lines.append(f"\t\t({_station_label(leg.origin)}) ==({leg.price}€:{leg.time}h)=> "
                             f"({_station_label(leg.destination)})")
        lines.append("")
        return "\n".join(lines)

def _station_label(station:Station) -> str:
    return f"{station.id}:{station.name}:{station.transport_type.value}:{station.city_name}"
