import httpx
import pytest

from data_pipeline.api_clients import (GEODB_HOST, SKYSCANNER_HOST, FlixBusClient, GeoDBClient,
                                       SkyscannerClient, TransportLegProvider, _make_api_request)
from data_pipeline.utils import KeyRotator
from routing_engine.models import City, Location, Station, TransportType
from tests.helpers import DEPARTURE, StubGeoClient, StubTransportClient

STOCKHOLM = Location(59.3293, 18.0686)

def _client(handler):
    return httpx.AsyncClient(transport = httpx.MockTransport(handler))

@pytest.mark.asyncio
async def test_make_api_request_retries_server_errors():
    statuses = [503, 200]
    def handler(request):
        status = statuses.pop(0)
        return httpx.Response(status, json = {"ok": status == 200})
    async with _client(handler) as session:
        response = await _make_api_request(session, "GET", "https://example.test/", max_retries = 1,
                                           retry_delay = 0)
    assert response == {"ok": True}
    assert statuses == []

@pytest.mark.asyncio
async def test_make_api_request_gives_up_on_client_errors_and_bad_json():
    async with _client(lambda request: httpx.Response(404, json = {})) as session:
        assert await _make_api_request(session, "GET", "https://example.test/", max_retries = 0) is None
    async with _client(lambda request: httpx.Response(200, text = "not json")) as session:
        assert await _make_api_request(session, "GET", "https://example.test/", max_retries = 0) is None

@pytest.mark.asyncio
async def test_geodb_first_city_is_anchor():
    requests = []
    def handler(request):
        requests.append(request)
        return httpx.Response(200, json = {"data": [{"city": "Stockholm", "countryCode": "SE"},
                                                    {"city": "Uppsala", "countryCode": "SE"},
                                                    {"name": "broken"}]})
    async with _client(handler) as session:
        cities = await GeoDBClient(session, "geo-key", max_retries = 0).nearby_cities(STOCKHOLM)
    assert [(city.name, city.is_transit) for city in cities] == [("Stockholm", False), ("Uppsala", True)]
    assert cities[0].country_code == "SE"
    assert "nearbyCities" in requests[0].url.path
    assert requests[0].url.params["minPopulation"] == "100000"
    assert requests[0].headers["x-rapidapi-key"] == "geo-key"

@pytest.mark.asyncio
async def test_geodb_failure_gives_no_cities():
    async with _client(lambda request: httpx.Response(500)) as session:
        assert await GeoDBClient(session, "geo-key", max_retries = 0).nearby_cities(STOCKHOLM) == []

@pytest.mark.asyncio
async def test_skyscanner_places_skip_generic_city_ids():
    keys = []
    def handler(request):
        keys.append(request.headers["x-rapidapi-key"])
        return httpx.Response(200, json = {"Places": [{"PlaceId": "STOC-sky", "PlaceName": "Stockholm"},
                                                      {"PlaceId": "ARN-sky", "PlaceName": "Stockholm Arlanda"}]})
    async with _client(handler) as session:
        client = SkyscannerClient(session, KeyRotator(["k1", "k2"]), max_retries = 0)
        stations = await client.fetch_places(City("Stockholm", "SE"))
        await client.fetch_places(City("Stockholm", "SE"))
    assert [station.id for station in stations] == ["ARN-sky"]
    assert stations[0].transport_type == TransportType.SKYSCANNER
    assert stations[0].city_name == "Stockholm"
    assert keys == ["k2", "k1"]

@pytest.mark.asyncio
async def test_skyscanner_quotes_keep_requested_date_only():
    body = {"Quotes": [{"MinPrice": 42.5, "Direct": True,
                        "OutboundLeg": {"OriginId": 12345, "DestinationId": 67890,
                                        "DepartureDate": "2020-12-04T00:00:00"}},
                       {"MinPrice": 10, "Direct": True,
                        "OutboundLeg": {"OriginId": 12345, "DestinationId": 67890,
                                        "DepartureDate": "2020-12-05T00:00:00"}}],
            "Places": [{"PlaceId": 12345, "Name": "Arlanda"}]}
    requests = []
    def handler(request):
        requests.append(request)
        return httpx.Response(200, json = body)
    origin = Station(id = "ARN-sky", city_name = "Stockholm")
    destination = Station(id = "CPH-sky", city_name = "Copenhagen")
    async with _client(handler) as session:
        legs = await SkyscannerClient(session, KeyRotator(["k1"]), max_retries = 0).fetch_legs(
            origin, destination, DEPARTURE, City("Stockholm", "SE"), City("Copenhagen", "DK"))
    assert len(legs) == 1
    assert legs[0].price == 42.5
    assert legs[0].time == 0.0
    assert legs[0].origin.id == "12345.0"
    assert legs[0].origin.name == "Arlanda"
    assert legs[0].destination.name == "67890.0"
    assert legs[0].destination.city_name == "Copenhagen"
    assert requests[0].url.path.endswith("/SE/EUR/en-US/ARN-sky/CPH-sky/2020-12-04")

@pytest.mark.asyncio
async def test_skyscanner_rate_limit_message_gives_no_legs():
    async with _client(lambda request: httpx.Response(200, json = {"message": "Too many requests"})) as session:
        legs = await SkyscannerClient(session, KeyRotator(["k1"]), max_retries = 0).fetch_legs(
            Station(id = "ARN-sky"), Station(id = "CPH-sky"), DEPARTURE, City("Stockholm"), City("Copenhagen"))
    assert legs == []

@pytest.mark.asyncio
async def test_flixbus_journeys_become_legs():
    journeys = [{"origin": {"id": "88", "name": "Stockholm City"},
                 "destination": {"id": "99", "name": "Copenhagen Central"},
                 "departure": "2020-12-04T08:00:00.000Z", "arrival": "2020-12-04T10:30:00.000Z",
                 "price": {"amount": 19.99}, "direct": True},
                {"origin": {"id": "88", "name": "Stockholm City"},
                 "destination": {"id": "99", "name": "Copenhagen Central"},
                 "departure": "2020-12-04T09:00:00.000Z", "arrival": "2020-12-04T12:00:00.000Z"}]
    requests = []
    def handler(request):
        requests.append(request)
        return httpx.Response(200, json = journeys)
    async with _client(handler) as session:
        legs = await FlixBusClient(session, max_retries = 0).fetch_legs(
            Station(id = "88"), Station(id = "99"), DEPARTURE, City("Stockholm"), City("Copenhagen"))
    assert len(legs) == 1
    assert legs[0].price == pytest.approx(19.99)
    assert legs[0].time == pytest.approx(2.5)
    assert legs[0].transport_type == TransportType.FLIXBUS
    assert requests[0].url.params["date"] == "2020-12-04"
    assert requests[0].url.params["origin"] == "88"

@pytest.mark.asyncio
async def test_flixbus_regions():
    async with _client(lambda request: httpx.Response(200, json = [{"id": 88, "name": "Stockholm"}])) as session:
        stations = await FlixBusClient(session, max_retries = 0).fetch_places(City("Stockholm"))
    assert stations == [Station(id = "88")]
    assert stations[0].transport_type == TransportType.FLIXBUS

@pytest.mark.asyncio
async def test_skyscanner_malformed_lists_give_empty_results():
    async with _client(lambda request: httpx.Response(200, json = {"Places": None, "Quotes": "none"})) as session:
        client = SkyscannerClient(session, KeyRotator(["k1"]), max_retries = 0)
        assert await client.fetch_places(City("Stockholm")) == []
        assert await client.fetch_legs(Station(id = "ARN-sky"), Station(id = "CPH-sky"), DEPARTURE,
                                       City("Stockholm"), City("Copenhagen")) == []

@pytest.mark.asyncio
async def test_skyscanner_quote_names_ignore_malformed_places():
    body = {"Quotes": [{"MinPrice": 42.5,
                        "OutboundLeg": {"OriginId": 1, "DestinationId": 2, "DepartureDate": "2020-12-04T00:00:00"}}],
            "Places": ["junk", {"PlaceId": 1, "Name": "Arlanda"}]}
    async with _client(lambda request: httpx.Response(200, json = body)) as session:
        legs = await SkyscannerClient(session, KeyRotator(["k1"]), max_retries = 0).fetch_legs(
            Station(id = "ARN-sky"), Station(id = "CPH-sky"), DEPARTURE, City("Stockholm"), City("Copenhagen"))
    assert [(item.origin.name, item.destination.name) for item in legs] == [("Arlanda", "2.0")]

@pytest.mark.asyncio
async def test_provider_keeps_bus_stations_when_flight_places_are_malformed():
    def handler(request):
        if request.url.host == GEODB_HOST:
            return httpx.Response(200, json = {"data": [{"city": "Stockholm", "countryCode": "SE"}]})
        if request.url.host == SKYSCANNER_HOST:
            return httpx.Response(200, json = {"Places": None})
        return httpx.Response(200, json = [{"id": "1", "name": "Stockholm"}])
    async with _client(handler) as session:
        provider = TransportLegProvider(GeoDBClient(session, "geo-key", max_retries = 0),
                                        [SkyscannerClient(session, KeyRotator(["k1"]), max_retries = 0),
                                         FlixBusClient(session, max_retries = 0)])
        cities = await provider.resolve_cities(STOCKHOLM)
    assert [city.name for city in cities] == ["Stockholm"]
    assert list(cities[0].stations) == ["1"]
    assert cities[0].stations["1"].transport_type == TransportType.FLIXBUS

def _stockholm_uppsala_clients(fail_flight_legs = False):
    bus = StubTransportClient(TransportType.FLIXBUS,
                              {"Stockholm": [Station(id = "b1", transport_type = TransportType.FLIXBUS,
                                                     city_name = "Stockholm")],
                               "Uppsala": [Station(id = "b2", transport_type = TransportType.FLIXBUS,
                                                   city_name = "Uppsala")]})
    flight = StubTransportClient(TransportType.SKYSCANNER,
                                 {"Stockholm": [Station(id = "f1", transport_type = TransportType.SKYSCANNER,
                                                        city_name = "Stockholm"),
                                                Station(id = "b1", transport_type = TransportType.SKYSCANNER,
                                                        city_name = "Stockholm")],
                                  "Uppsala": [Station(id = "f2", transport_type = TransportType.SKYSCANNER,
                                                      city_name = "Uppsala")]},
                                 fail_legs = fail_flight_legs)
    return bus, flight

@pytest.mark.asyncio
async def test_provider_fills_stations_and_pairs_same_transport():
    bus, flight = _stockholm_uppsala_clients()
    geo = StubGeoClient({STOCKHOLM: [("Stockholm", False), ("Uppsala", True)]})
    provider = TransportLegProvider(geo, [bus, flight])
    stockholm, uppsala = await provider.resolve_cities(STOCKHOLM)
    assert list(stockholm.stations) == ["b1", "f1"]
    assert list(uppsala.stations) == ["b2", "f2"]

    legs = await provider.fetch_legs(stockholm, uppsala, DEPARTURE)
    assert bus.leg_calls == [("b1", "b2")]
    assert flight.leg_calls == [("f1", "f2")]
    assert len(legs) == 2

@pytest.mark.asyncio
async def test_provider_drops_failing_client_and_keeps_the_others():
    bus, flight = _stockholm_uppsala_clients(fail_flight_legs = True)
    geo = StubGeoClient({STOCKHOLM: [("Stockholm", False), ("Uppsala", True)]})
    provider = TransportLegProvider(geo, [bus, flight])
    stockholm, uppsala = await provider.resolve_cities(STOCKHOLM)
    legs = await provider.fetch_legs(stockholm, uppsala, DEPARTURE)
    assert flight.leg_calls == [("f1", "f2")]
    assert [(item.origin.id, item.destination.id) for item in legs] == [("b1", "b2")]
