"""Places provider — nearby venues from Google Places, or a user-tagged place."""

import logging

import httpx

from contexttunes.services.signals.base import (
    BaseProvider,
    Failure,
    LocationFix,
    Place,
    ProviderResult,
    Source,
    Success,
)
from contexttunes.services.signals.location_provider import LocationSource, distance_meters

logger = logging.getLogger(__name__)

# Venue types relevant for context-aware music
INCLUDED_TYPES = [
    "library", "school", "university", "park", "restaurant", "pub", "bar", "cafe",
    "gym", "stadium", "beach",
]

FIELD_MASK = "places.displayName,places.primaryType,places.types,places.location"

# Places API primary type -> simplified category
CATEGORY_MAP = {
    "school": "school",
    "university": "school",
    "bar": "nightlife",
    "night_club": "nightlife",
    "gym": "gym",
    "stadium": "gym",
    "store": "shopping",
    "shopping_mall": "shopping",
}


def simplify_category(primary_type: str) -> str:
    key = primary_type.lower()
    return CATEGORY_MAP.get(key, key)


def parse_tagged_places(raw: dict[str, str]) -> dict[str, tuple[float, float]]:
    """Parse ``{"Home": "lat,lon"}`` entries, skipping malformed ones."""
    tagged: dict[str, tuple[float, float]] = {}
    for tag, value in raw.items():
        parts = value.split(",")
        if len(parts) != 2:
            logger.warning(f"Ignoring tagged place {tag!r}: expected 'lat,lon'")
            continue
        try:
            tagged[tag] = (float(parts[0]), float(parts[1]))
        except ValueError:
            logger.warning(f"Ignoring tagged place {tag!r}: invalid coordinates")
    return tagged


class PlacesProvider(BaseProvider[list[Place]]):
    """Nearby-search keyed by the current fix.

    A fix within ``tagged_radius_m`` of a user-tagged place short-circuits the
    remote lookup and yields that place alone.
    """

    source = Source.PLACES

    def __init__(
        self,
        client: httpx.AsyncClient,
        location_source: LocationSource,
        api_key: str,
        base_url: str,
        radius_m: float = 300.0,
        max_results: int = 10,
        tagged_places: dict[str, str] | None = None,
        tagged_radius_m: float = 100.0,
    ):
        self._client = client
        self._location_source = location_source
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._radius_m = radius_m
        self._max_results = max_results
        self._tagged = parse_tagged_places(tagged_places or {})
        self._tagged_radius_m = tagged_radius_m

    async def _fetch(self) -> ProviderResult[list[Place]]:
        fix = await self._location_source.current_fix()
        if fix is None:
            return Failure("location unavailable")

        tagged = self._match_tagged(fix)
        if tagged:
            logger.debug(f"Fix is within tagged place {tagged.name!r}")
            return Success([tagged])

        if not self._api_key:
            return Failure("missing api key")

        resp = await self._client.post(
            f"{self._base_url}/places:searchNearby",
            json={
                "includedTypes": INCLUDED_TYPES,
                "maxResultCount": self._max_results,
                "rankPreference": "DISTANCE",
                "locationRestriction": {
                    "circle": {
                        "center": {"latitude": fix.lat, "longitude": fix.lon},
                        "radius": self._radius_m,
                    }
                },
            },
            headers={
                "X-Goog-Api-Key": self._api_key,
                "X-Goog-FieldMask": FIELD_MASK,
            },
        )
        resp.raise_for_status()
        data = resp.json()

        places = []
        for p in data.get("places", []):
            loc = p["location"]
            places.append(Place(
                name=p.get("displayName", {}).get("text", "Unknown"),
                category=simplify_category(p.get("primaryType") or (p.get("types") or ["unknown"])[0]),
                distance_meters=round(
                    distance_meters(fix.lat, fix.lon, loc["latitude"], loc["longitude"]), 1
                ),
            ))
        logger.debug(f"Found {len(places)} nearby places")
        return Success(places)

    def _match_tagged(self, fix: LocationFix) -> Place | None:
        for tag, (lat, lon) in self._tagged.items():
            d = distance_meters(fix.lat, fix.lon, lat, lon)
            if d <= self._tagged_radius_m:
                return Place(name=tag, category=tag.lower(), distance_meters=round(d, 1))
        return None
