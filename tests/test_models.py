import pytest

from routing_engine.models import City, Itinerary, Location, Station, TransportType, TripGraph
from tests.helpers import leg, station, graph_from_legs, scenario_a

def test_city_identity_is_name():
    madrid = City("Madrid", "ES", False)
    partial = City("Madrid", None, True)
    assert madrid == partial
    assert len({madrid, partial}) == 1
    assert City("Madrid") != City("Barcelona")

def test_station_identity_is_id():
    first = Station(id = "123", name = "Arlanda", transport_type = TransportType.FLIXBUS, city_name = "Stockholm")
    second = Station(id = "123", name = "Arlanda T5", transport_type = TransportType.SKYSCANNER, city_name = "Uppsala")
    assert first == second
    assert hash(first) == hash(second)
    assert first != Station(id = "124")

def test_city_add_station_keeps_first_record():
    city = City("Stockholm")
    city.add_station(Station(id = "1", name = "first", city_name = "Stockholm"))
    city.add_station(Station(id = "1", name = "second", city_name = "Stockholm"))
    assert list(city.stations) == ["1"]
    assert city.stations["1"].name == "first"
    assert city.has_station(Station(id = "1"))

def test_itinerary_extend_sums_totals():
    a1, b1, c1, legs = scenario_a()
    itinerary = Itinerary().extend(legs[1]).extend(legs[2])
    assert itinerary.total_price == pytest.approx(90)
    assert itinerary.total_time == pytest.approx(4)
    assert itinerary.stations == [a1, c1, b1]
    assert itinerary.city_names == ["A", "C", "B"]
    assert Itinerary().stations == []

def test_leg_rejects_negative_values():
    a1, b1 = station("a1", "A"), station("b1", "B")
    with pytest.raises(ValueError):
        leg(a1, b1, -1, 2)
    with pytest.raises(ValueError):
        leg(a1, b1, 1, -2)

def test_location_iso6709():
    assert Location(40.4168, -3.7038).to_iso6709() == "+40.4168-3.7038"

def test_graph_describe_lists_outgoing_legs():
    _, _, _, legs = scenario_a()
    graph = graph_from_legs("A", "B", legs)
    description = graph.describe()
    assert "**Nodes**" in description
    assert "*Outgoing legs from node A*" in description
    assert "*Outgoing legs from node B*" not in description
    assert "(a1:a1 station:FlixBus:A) ==(40€:2h)=> (c1:c1 station:FlixBus:C)" in description

def test_empty_graph_helpers():
    graph = TripGraph(origin = City("A"), destination = City("B"))
    assert graph.is_empty
    assert graph.city_stations("A") == []
