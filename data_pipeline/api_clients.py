"""
Asynchronous API clients for the external collaborators of the trip planner:
nearby cities (GeoDB), flight places and quotes (Skyscanner) and bus
regions and journeys (FlixBus).

Uses httpx for efficient async requests. Every client returns an empty list
when the upstream API fails or answers something unexpected, so a failing
provider only reduces the search space.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Awaitable, Dict, List, Optional, Sequence

import httpx

from routing_engine.models import City, Leg, Location, Station, TransportType
from .utils import KeyRotator, journey_duration_hours, safe_float

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)
DEFAULT_RETRY_STATUS = {500, 502, 503, 504}

GEODB_HOST = "wft-geo-db.p.rapidapi.com"
GEODB_BASE_URL = f"https://{GEODB_HOST}/v1/geo/"
SKYSCANNER_HOST = "skyscanner-skyscanner-flight-search-v1.p.rapidapi.com"
SKYSCANNER_BASE_URL = f"https://{SKYSCANNER_HOST}/apiservices/"
FLIXBUS_BASE_URL = "https://1.flixbus.transport.rest/"

# GeoDB nearby city search
DEFAULT_GEODB_RADIUS_KM = 200
DEFAULT_GEODB_LIMIT = 5
DEFAULT_GEODB_MIN_POPULATION = 100000
DEFAULT_GEODB_SORT = "-population"
# Skyscanner market settings
DEFAULT_CURRENCY = "EUR"
DEFAULT_LOCALE = "en-GB"
DEFAULT_BROWSE_LOCALE = "en-US"
DEFAULT_MARKET = "GB" # Used when a city has no country code

async def _make_api_request(session:httpx.AsyncClient, method:str, url:str,
                            params:Optional[Dict[str, Any]] = None,
                            headers:Optional[Dict[str, str]] = None,
                            max_retries:int = 3,
                            retry_delay:float = 1.0,
                            timeout:httpx.Timeout = DEFAULT_TIMEOUT) -> Optional[Any]:
    retries = 0
    while retries <= max_retries:
        try:
            response = await session.request(method, url, params = params, headers = headers,
                                             timeout = timeout)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"HTTP Error {e.response.status_code} for {e.request.url}. Response: {e.response.text}")
            if e.response.status_code in DEFAULT_RETRY_STATUS and retries < max_retries:
                retries += 1
                logger.info(f"Retrying request ({retries} / {max_retries})...")
                await asyncio.sleep(retry_delay * (2**retries))
            else:
                logger.error(f"Non-retryable HTTP status error or max retries reached for {url}")
                return None  # Give up after retries or for non-retryable errors (like 4xx)
        except httpx.RequestError as e:
            logger.error(f"Network error requesting {e.request.url}: {e}")
            # Network errors are often retryable
            if retries < max_retries:
                retries += 1
                logger.info(f"Retrying request ({retries}/{max_retries})...")
                await asyncio.sleep(retry_delay * (2**retries))
            else:
                logger.error(f"Max retries reached for network error at {url}")
                return None
        except ValueError as e:
            logger.error(f"Response from {url} is not valid JSON: {e}")
            return None
    return None

class GeoDBClient:
    """Finds the cities around some coordinates, biggest first"""
    def __init__(self, session:httpx.AsyncClient, api_key:Optional[str],
                 radius_km:int = DEFAULT_GEODB_RADIUS_KM,
                 limit:int = DEFAULT_GEODB_LIMIT,
                 min_population:int = DEFAULT_GEODB_MIN_POPULATION,
                 sort:str = DEFAULT_GEODB_SORT,
                 max_retries:int = 3):
        self.session = session
        self.api_key = api_key
        self.radius_km = radius_km
        self.limit = limit
        self.min_population = min_population
        self.sort = sort
        self.max_retries = max_retries

    async def nearby_cities(self, location:Location) -> List[City]:
        """
        Fetches the cities near a location.

        The first city of the response is the anchor city, every other one is
        flagged as transit. Stations are not filled here.

        Args:
            location: Coordinates to search around.

        Returns:
            Cities in response order, or an empty list if fetching fails.
        """
        if not self.api_key:
            logger.warning("GeoDB API key not provided. Requests will likely be rejected")
        request_url = f"{GEODB_BASE_URL}locations/{location.to_iso6709()}/nearbyCities"
        params = {"radius":self.radius_km,
                  "limit":self.limit,
                  "minPopulation":self.min_population,
                  "sort":self.sort,
                  "distanceUnit":"KM",
                  "types":"CITY"}
        headers = {"x-rapidapi-host":GEODB_HOST,
                   "x-rapidapi-key":self.api_key or "",
                   "Accept":"application/json"}
        logger.info(f"Fetching cities near {location}")
        response = await _make_api_request(self.session, "GET", request_url, params = params,
                                           headers = headers, max_retries = self.max_retries)
        if not isinstance(response, dict):
            logger.error(f"Failed to fetch nearby cities for {location}")
            return []
        raw_cities = response.get("data", [])
        if not isinstance(raw_cities, list):
            logger.warning(f"Nearby cities response format unexpected: {response}")
            return []
        cities = []
        for index, raw_city in enumerate(raw_cities):
            try:
                cities.append(City(name = raw_city["city"],
                                   country_code = raw_city.get("countryCode"),
                                   is_transit = index != 0))
            except (KeyError, TypeError) as e:
                logger.warning(f"Could not parse city data: {raw_city}. Error: {e}")
        logger.debug(f"Found {len(cities)} cities near {location}: {[city.name for city in cities]}")
        return cities

class TransportClient(ABC):
    """A transport provider able to list the stations of a city and the legs between two stations"""
    transport_type:TransportType

    def __init__(self, session:httpx.AsyncClient, max_retries:int = 3):
        self.session = session
        self.max_retries = max_retries
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def fetch_places(self, city:City) -> List[Station]:
        pass

    @abstractmethod
    async def fetch_legs(self, origin:Station, destination:Station, departure_date:date,
                         origin_city:City, destination_city:City) -> List[Leg]:
        pass

class SkyscannerClient(TransportClient):
    """Flight places and cheapest quotes from the Skyscanner RapidAPI endpoints"""
    transport_type = TransportType.SKYSCANNER

    def __init__(self, session:httpx.AsyncClient, key_rotator:KeyRotator,
                 currency:str = DEFAULT_CURRENCY, locale:str = DEFAULT_LOCALE,
                 max_retries:int = 3):
        super().__init__(session, max_retries)
        self.key_rotator = key_rotator
        self.currency = currency
        self.locale = locale

    def _headers(self) -> Dict[str, str]:
        # One key per request, spread over the configured pool
        return {"x-rapidapi-host":SKYSCANNER_HOST,
                "x-rapidapi-key":self.key_rotator.next_key() or "",
                "Accept":"application/json"}

    async def fetch_places(self, city:City) -> List[Station]:
        """Airports of a city. Generic city groups (e.g. 'STOC-sky') are dropped as they duplicate airports."""
        market = city.country_code or DEFAULT_MARKET
        request_url = f"{SKYSCANNER_BASE_URL}autosuggest/v1.0/{market}/{self.currency}/{self.locale}/"
        response = await _make_api_request(self.session, "GET", request_url, params = {"query":city.name},
                                           headers = self._headers(), max_retries = self.max_retries)
        if not isinstance(response, dict):
            self.logger.error(f"Failed to fetch Skyscanner places for {city.name}")
            return []
        places = response.get("Places", [])
        if not isinstance(places, list):
            self.logger.warning(f"Skyscanner places response format unexpected for {city.name}: {response}")
            return []
        stations = []
        for place in places:
            try:
                place_id = str(place["PlaceId"])
                if len(place_id.split("-")[0]) == 4:
                    continue
                stations.append(Station(id = place_id, name = place["PlaceName"],
                                        transport_type = self.transport_type, city_name = city.name))
            except (KeyError, TypeError) as e:
                self.logger.warning(f"Could not parse Skyscanner place: {place}. Error: {e}")
        self.logger.debug(f"Found {len(stations)} Skyscanner places for {city.name}")
        return stations

    @staticmethod
    def _place_id(raw_id:Any) -> str:
        # Browse responses use numeric ids, rendered the same way for every lookup
        return str(float(raw_id))

    def _place_name(self, place_id:str, route_places:List[Dict[str, Any]]) -> str:
        for route_place in route_places:
            if not isinstance(route_place, dict):
                continue
            raw_id = safe_float(route_place.get("PlaceId"))
            if raw_id is not None and str(raw_id) == place_id:
                return route_place.get("Name", place_id)
        return place_id

    async def fetch_legs(self, origin:Station, destination:Station, departure_date:date,
                         origin_city:City, destination_city:City) -> List[Leg]:
        """
        Cheapest quotes between two airports on a date.

        Skyscanner also returns alternative days, those quotes are dropped.
        Quotes carry no duration, so legs get a time of 0 hours.
        """
        market = origin_city.country_code or DEFAULT_MARKET
        date_str = departure_date.isoformat()
        request_url = (f"{SKYSCANNER_BASE_URL}browseroutes/v1.0/{market}/{self.currency}/"
                       f"{DEFAULT_BROWSE_LOCALE}/{origin.id}/{destination.id}/{date_str}")
        response = await _make_api_request(self.session, "GET", request_url,
                                           headers = self._headers(), max_retries = self.max_retries)
        if not isinstance(response, dict):
            self.logger.error(f"Failed to fetch Skyscanner quotes {origin.id} -> {destination.id}")
            return []
        if "message" in response:
            # Free plan
            self.logger.warning(f"Omitting Skyscanner quotes {origin.id} -> {destination.id} due to rate limit...")
            return []
        route_places = response.get("Places", [])
        if not isinstance(route_places, list):
            route_places = []
        quotes = response.get("Quotes", [])
        if not isinstance(quotes, list):
            self.logger.warning(f"Skyscanner quotes response format unexpected {origin.id} -> {destination.id}: {response}")
            return []
        legs = []
        for quote in quotes:
            try:
                outbound_leg = quote["OutboundLeg"]
                if not str(outbound_leg["DepartureDate"]).startswith(date_str):
                    continue
                origin_id = self._place_id(outbound_leg["OriginId"])
                destination_id = self._place_id(outbound_leg["DestinationId"])
                leg_origin = Station(id = origin_id, name = self._place_name(origin_id, route_places),
                                     transport_type = self.transport_type, city_name = origin_city.name)
                leg_destination = Station(id = destination_id, name = self._place_name(destination_id, route_places),
                                          transport_type = self.transport_type, city_name = destination_city.name)
                legs.append(Leg(origin = leg_origin, destination = leg_destination,
                                is_direct = bool(quote.get("Direct", False)),
                                transport_type = self.transport_type,
                                price = float(quote["MinPrice"]), time = 0.0,
                                departure_datetime = date_str, arrival_datetime = date_str))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Could not parse Skyscanner quote: {quote}. Error: {e}")
        self.logger.debug(f"Found {len(legs)} Skyscanner legs {origin.id} -> {destination.id} on {date_str}")
        return legs

class FlixBusClient(TransportClient):
    """Bus regions and journeys from the FlixBus transport.rest API"""
    transport_type = TransportType.FLIXBUS

    async def fetch_places(self, city:City) -> List[Station]:
        request_url = f"{FLIXBUS_BASE_URL}regions/"
        response = await _make_api_request(self.session, "GET", request_url, params = {"query":city.name},
                                           max_retries = self.max_retries)
        if not isinstance(response, list):
            self.logger.error(f"Failed to fetch FlixBus regions for {city.name}")
            return []
        stations = []
        for region in response:
            try:
                stations.append(Station(id = str(region["id"]), name = region["name"],
                                        transport_type = self.transport_type, city_name = city.name))
            except (KeyError, TypeError) as e:
                self.logger.warning(f"Could not parse FlixBus region: {region}. Error: {e}")
        self.logger.debug(f"Found {len(stations)} FlixBus regions for {city.name}")
        return stations

    async def fetch_legs(self, origin:Station, destination:Station, departure_date:date,
                         origin_city:City, destination_city:City) -> List[Leg]:
        """Bus journeys between two regions on a date, duration computed from their timestamps"""
        request_url = f"{FLIXBUS_BASE_URL}journeys/"
        params = {"origin":origin.id,
                  "destination":destination.id,
                  "date":departure_date.isoformat()}
        response = await _make_api_request(self.session, "GET", request_url, params = params,
                                           max_retries = self.max_retries)
        if not isinstance(response, list):
            self.logger.error(f"Failed to fetch FlixBus journeys {origin.id} -> {destination.id}")
            return []
        legs = []
        for journey in response:
            try:
                # TODO: Expose journey["available"] seats once seat availability is supported
                raw_origin = journey["origin"]
                raw_destination = journey["destination"]
                duration = journey_duration_hours(journey["departure"], journey["arrival"])
                price = safe_float(journey["price"]["amount"])
                if duration is None or price is None:
                    self.logger.warning(f"Skipping FlixBus journey with unreadable times or price: {journey}")
                    continue
                leg_origin = Station(id = str(raw_origin["id"]), name = raw_origin["name"],
                                     transport_type = self.transport_type, city_name = origin_city.name)
                leg_destination = Station(id = str(raw_destination["id"]), name = raw_destination["name"],
                                          transport_type = self.transport_type, city_name = destination_city.name)
                legs.append(Leg(origin = leg_origin, destination = leg_destination,
                                is_direct = bool(journey.get("direct", False)),
                                transport_type = self.transport_type,
                                price = price, time = duration,
                                departure_datetime = journey["departure"],
                                arrival_datetime = journey["arrival"]))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Could not parse FlixBus journey: {journey}. Error: {e}")
        self.logger.debug(f"Found {len(legs)} FlixBus legs {origin.id} -> {destination.id}")
        return legs

async def _gather_surviving(tasks:List[Awaitable[List[Any]]], description:str) -> List[List[Any]]:
    """Runs provider calls concurrently, dropping the ones that raised so the others still count"""
    results = await asyncio.gather(*tasks, return_exceptions = True)
    surviving = []
    for result in results:
        if isinstance(result, Exception):
            logger.error(f"Provider call for {description} failed: {result}", exc_info = result)
            continue
        surviving.append(result)
    return surviving

class TransportLegProvider:
    """
    Combines the geo client and the transport clients behind the interfaces
    the planner needs: city resolution with stations, and legs between cities.
    """
    def __init__(self, geo_client:GeoDBClient, transport_clients:Sequence[TransportClient]):
        self.geo_client = geo_client
        self.clients_by_type:Dict[TransportType, TransportClient] = {
            client.transport_type: client for client in transport_clients}

    async def fetch_stations(self, city:City) -> List[Station]:
        """Stations of a city across every provider, one per id"""
        tasks = [client.fetch_places(city) for client in self.clients_by_type.values()]
        station_lists = await _gather_surviving(tasks, f"stations of {city.name}")
        stations = {}
        for station_list in station_lists:
            for station in station_list:
                stations.setdefault(station.id, station)
        return list(stations.values())

    async def resolve_cities(self, location:Location) -> List[City]:
        """Nearby cities with their stations filled, anchor city first"""
        cities = await self.geo_client.nearby_cities(location)
        station_lists = await asyncio.gather(*(self.fetch_stations(city) for city in cities))
        for city, stations in zip(cities, station_lists):
            for station in stations:
                city.add_station(station)
        return cities

    async def fetch_legs(self, origin:City, destination:City, departure_date:date) -> List[Leg]:
        """Legs between every pair of same provider stations of two cities"""
        tasks = []
        for origin_station in origin.stations.values():
            for destination_station in destination.stations.values():
                if origin_station.transport_type != destination_station.transport_type:
                    continue
                client = self.clients_by_type.get(origin_station.transport_type)
                if client is None:
                    continue
                tasks.append(client.fetch_legs(origin_station, destination_station, departure_date,
                                               origin, destination))
        if not tasks:
            logger.debug(f"No compatible station pairs between {origin.name} and {destination.name}")
            return []
        leg_lists = await _gather_surviving(tasks, f"legs {origin.name} -> {destination.name}")
        legs = [leg for leg_list in leg_lists for leg in leg_list]
        logger.info(f"Fetched {len(legs)} legs {origin.name} -> {destination.name} on {departure_date}")
        return legs
