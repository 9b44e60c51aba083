"""Address-to-coordinates lookup against the Google Geocoding API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from backend.domain.errors import DependencyFailureError, NotFoundError, ReservationValidationError
from backend.domain.models import Coordinates
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class AddressNotFoundError(NotFoundError):
    """Raised when the geocoder has no match for an address."""


@dataclass(frozen=True)
class GeocodedAddress:
    query: str
    formatted_address: str
    coordinates: Coordinates


class Geocoder(Protocol):
    def geocode(self, address: str) -> GeocodedAddress:
        ...


class GoogleGeocodingService:
    """Thin client; only the first result is used."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or httpx.Client(timeout=self._settings.geocoding_timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def geocode(self, address: str) -> GeocodedAddress:
        query = address.strip()
        if not query:
            raise ReservationValidationError("Destination address is required")
        if not self._settings.google_maps_api_key:
            raise DependencyFailureError(
                "GOOGLE_MAPS_API_KEY is not configured. Set it to enable destination search."
            )

        try:
            response = self._client.get(
                self._settings.geocoding_base_url,
                params={"address": query, "key": self._settings.google_maps_api_key},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Geocoding request failed for %r: %s", query, exc)
            raise DependencyFailureError(f"Geocoding service unavailable: {exc}") from exc

        status = payload.get("status")
        results = payload.get("results") or []
        if status == "ZERO_RESULTS" or (status == "OK" and not results):
            raise AddressNotFoundError(f"Could not geocode the provided address: {query}")
        if status != "OK":
            message = payload.get("error_message") or status or "unknown error"
            logger.error("Geocoding error for %r: %s", query, message)
            raise DependencyFailureError(f"Geocoding service error: {message}")

        first = results[0]
        location = first["geometry"]["location"]
        return GeocodedAddress(
            query=query,
            formatted_address=str(first.get("formatted_address", query)),
            coordinates=Coordinates(
                latitude=float(location["lat"]),
                longitude=float(location["lng"]),
            ),
        )
