import logging
from typing import Any, Dict, Optional

from fastapi import Depends
from geopy.exc import GeopyError
from geopy.geocoders import get_geocoder_for_service

from config import Settings, get_settings
from errors import ErrorResponse

logger = logging.getLogger(__name__)


def _components(provider: str, raw: Dict[str, Any]) -> Dict[str, Optional[str]]:
    if provider == "mapquest":
        return {
            "street": raw.get("street"),
            "city": raw.get("adminArea5"),
            "state": raw.get("adminArea3"),
            "zipcode": raw.get("postalCode"),
            "country": raw.get("adminArea1"),
        }
    address = raw.get("address", {}) if isinstance(raw.get("address"), dict) else {}
    return {
        "street": address.get("road"),
        "city": address.get("city") or address.get("town") or address.get("village"),
        "state": address.get("state"),
        "zipcode": address.get("postcode"),
        "country": (address.get("country_code") or "").upper() or None,
    }


class Geocoder:
    """Resolves a free-form address into a GeoJSON point plus address parts."""

    def __init__(self, settings: Settings):
        self.provider = settings.geocoder_provider.lower()
        cls = get_geocoder_for_service(self.provider)
        if self.provider == "nominatim":
            self._client = cls(user_agent="bootcamp-directory")
        else:
            self._client = cls(api_key=settings.geocoder_api_key)

    def geocode(self, address: str) -> Optional[Dict[str, Any]]:
        kwargs = {"addressdetails": True} if self.provider == "nominatim" else {}
        try:
            loc = self._client.geocode(address, exactly_one=True, **kwargs)
        except GeopyError as e:
            logger.warning("Geocoding %r failed: %s", address, e)
            raise ErrorResponse("Geocoding service unavailable", 500)
        if loc is None:
            return None
        return {
            "type": "Point",
            "coordinates": [loc.longitude, loc.latitude],
            "formattedAddress": loc.address,
            **_components(self.provider, loc.raw),
        }


def get_geocoder(settings: Settings = Depends(get_settings)) -> Geocoder:
    return Geocoder(settings)


def geocode_or_fail(geocoder: Geocoder, address: str, field: str = "address") -> Dict[str, Any]:
    location = geocoder.geocode(address)
    if location is None:
        raise ErrorResponse("The given data was invalid.", 400, {field: f"Could not geocode the {field}"})
    return location
