"""Builders and fakes shared by the tests."""
from datetime import date
from typing import Dict, List, Optional, Tuple

from data_pipeline.api_clients import TransportClient
from routing_engine.models import City, Leg, Location, Station, TransportType, TripGraph

DEPARTURE = date(2020, 12, 4)

def station(station_id:str, city_name:str, transport_type:TransportType = TransportType.FLIXBUS) -> Station:
    return Station(id = station_id, name = f"{station_id} station",
                   transport_type = transport_type, city_name = city_name)

def leg(origin:Station, destination:Station, price:float, time:float) -> Leg:
    return Leg(origin = origin, destination = destination, is_direct = True,
               transport_type = origin.transport_type, price = price, time = time,
               departure_datetime = "2020-12-04T08:00:00.000Z",
               arrival_datetime = "2020-12-04T10:00:00.000Z")

def graph_from_legs(origin_name:str, destination_name:str, legs:List[Leg]) -> TripGraph:
    """Graph with nodes derived from legs, as build_trip_graph does"""
    graph = TripGraph(origin = City(origin_name), destination = City(destination_name), edges = list(legs))
    for item in legs:
        for end in (item.origin, item.destination):
            node = graph.nodes.setdefault(end.city_name, City(end.city_name,
                                                              is_transit = end.city_name not in (origin_name, destination_name)))
            node.add_station(end)
            graph.total_places.setdefault(end.id, end)
    return graph

def scenario_a() -> Tuple[Station, Station, Station, List[Leg]]:
    a1, b1, c1 = station("a1", "A"), station("b1", "B"), station("c1", "C")
    legs = [leg(a1, b1, 100, 5), leg(a1, c1, 40, 2), leg(c1, b1, 50, 2)]
    return a1, b1, c1, legs

class FakeLegProvider:
    """In memory provider: legs per (origin, destination) city names and cities per location"""
    def __init__(self, legs_by_pair:Optional[Dict[Tuple[str, str], List[Leg]]] = None,
                 cities_by_location:Optional[Dict[Location, List[City]]] = None):
        self.legs_by_pair = legs_by_pair or {}
        self.cities_by_location = cities_by_location or {}
        self.calls:List[Tuple[str, str]] = []

    async def fetch_legs(self, origin:City, destination:City, departure_date:date) -> List[Leg]:
        self.calls.append((origin.name, destination.name))
        return list(self.legs_by_pair.get((origin.name, destination.name), []))

    async def resolve_cities(self, location:Location) -> List[City]:
        return list(self.cities_by_location.get(location, []))

class StubTransportClient(TransportClient):
    """Transport client answering from memory. Legs default to one 10 EUR / 1 h leg per station pair."""
    def __init__(self, transport_type:TransportType, places:Dict[str, List[Station]],
                 legs_by_pair:Optional[Dict[Tuple[str, str], List[Leg]]] = None, fail_legs:bool = False):
        super().__init__(session = None)
        self.transport_type = transport_type
        self.places = places
        self.legs_by_pair = legs_by_pair
        self.fail_legs = fail_legs
        self.leg_calls:List[Tuple[str, str]] = []

    async def fetch_places(self, city:City) -> List[Station]:
        return list(self.places.get(city.name, []))

    async def fetch_legs(self, origin:Station, destination:Station, departure_date:date,
                         origin_city:City, destination_city:City) -> List[Leg]:
        self.leg_calls.append((origin.id, destination.id))
        if self.fail_legs:
            raise RuntimeError(f"{self.transport_type.value} unavailable")
        if self.legs_by_pair is None:
            return [leg(origin, destination, 10, 1)]
        return list(self.legs_by_pair.get((origin.id, destination.id), []))

class StubGeoClient:
    """Nearby cities per location, fresh City objects on every call"""
    def __init__(self, city_specs_by_location:Dict[Location, List[Tuple[str, bool]]]):
        self.city_specs_by_location = city_specs_by_location

    async def nearby_cities(self, location:Location) -> List[City]:
        return [City(name, is_transit = is_transit)
                for name, is_transit in self.city_specs_by_location.get(location, [])]
