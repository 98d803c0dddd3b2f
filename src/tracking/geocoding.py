"""
Address resolution: forward geocoding (free text / PIN code -> coordinates)
and reverse geocoding (coordinates -> formatted address).

Providers:
    NominatimForwardProvider  — OpenStreetMap search, no API key
    PostalCodeForwardProvider — offline Indian PIN lookup (pgeocode)
    GoogleReverseProvider     — Google Geocoding API, keyed
    NominatimReverseProvider  — OpenStreetMap reverse, no API key

Reverse geocoding must never block a location push, so AddressResolver
turns every reverse failure into an empty string.
"""

import re
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

import pgeocode
import requests

from src.tracking.config import TrackingConfig
from src.tracking.errors import GeocodeNoMatch, GeocodeProviderError

logger = logging.getLogger(__name__)

PIN_CODE_PATTERN = re.compile(r"\b(\d{6})\b")
DEFAULT_CACHE_SIZE = 256


@dataclass(frozen=True)
class GeocodeResult:
    """A single forward geocoding match."""
    lat: float
    lng: float
    address: str = ""


def round_coords(lat: float, lng: float, precision: int = 4) -> Tuple[float, float]:
    """Cache key from rounded coordinates (4 decimals ~ 11m)."""
    return round(lat, precision), round(lng, precision)


class NominatimForwardProvider:
    """Forward geocoding via the OpenStreetMap Nominatim search API."""

    name = "nominatim"

    def __init__(self, base_url: str, user_agent: str, timeout: float = 15.0):
        self.search_url = f"{base_url.rstrip('/')}/search"
        self.user_agent = user_agent
        self.timeout = timeout

    def search(self, query: str) -> List[GeocodeResult]:
        params = {
            "q": query,
            "format": "json",
            "limit": 1,
            "addressdetails": 1,
        }
        try:
            resp = requests.get(
                self.search_url, params=params, timeout=self.timeout,
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise GeocodeProviderError(f"Nominatim search failed: {e}") from e

        if not isinstance(data, list):
            raise GeocodeProviderError("Nominatim returned an unexpected payload")

        results = []
        for item in data:
            try:
                results.append(GeocodeResult(
                    lat=float(item["lat"]),
                    lng=float(item["lon"]),
                    address=str(item.get("display_name", "") or ""),
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise GeocodeProviderError(f"Malformed Nominatim result: {e}") from e
        return results


class PostalCodeForwardProvider:
    """
    Offline Indian PIN code lookup using the pgeocode dataset.

    Only queries that contain a 6-digit PIN are answered; anything else
    yields no match. The dataset (~2MB) is downloaded on first use.
    """

    name = "pgeocode"

    def __init__(self, country_code: str = "IN"):
        self.country_code = country_code
        self._nomi = None

    def _lookup(self):
        if self._nomi is None:
            self._nomi = pgeocode.Nominatim(self.country_code)
        return self._nomi

    def search(self, query: str) -> List[GeocodeResult]:
        match = PIN_CODE_PATTERN.search(query)
        if not match:
            return []
        pin_code = match.group(1)
        try:
            result = self._lookup().query_postal_code(pin_code)
        except (OSError, ValueError) as e:
            raise GeocodeProviderError(f"PIN code dataset unavailable: {e}") from e

        # pgeocode returns NaN for unknown codes
        if result is None or str(result.latitude) == "nan":
            return []

        place = str(result.place_name) if str(getattr(result, "place_name", "nan")) != "nan" else None
        county = str(result.county_name) if str(getattr(result, "county_name", "nan")) != "nan" else None
        state = str(result.state_name) if str(getattr(result, "state_name", "nan")) != "nan" else None
        display = ", ".join(filter(None, [place, county, state, pin_code, "India"]))

        return [GeocodeResult(
            lat=float(result.latitude),
            lng=float(result.longitude),
            address=display,
        )]


class GoogleReverseProvider:
    """Reverse geocoding via the Google Geocoding API."""

    name = "google"

    def __init__(self, url: str, api_key: Optional[str], timeout: float = 15.0):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        if not api_key:
            logger.warning(
                "No Google Maps API key configured; reverse geocoding will be "
                "attempted without one"
            )

    def reverse(self, lat: float, lng: float) -> str:
        params = {"latlng": f"{lat},{lng}", "key": self.api_key or ""}
        resp = requests.get(self.url, params=params, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        results = data.get("results") or []
        if not results:
            return ""
        return str(results[0].get("formatted_address", "") or "")


class NominatimReverseProvider:
    """Reverse geocoding via OpenStreetMap Nominatim (keyless)."""

    name = "nominatim"

    def __init__(self, base_url: str, user_agent: str, timeout: float = 15.0):
        self.url = f"{base_url.rstrip('/')}/reverse"
        self.user_agent = user_agent
        self.timeout = timeout

    def reverse(self, lat: float, lng: float) -> str:
        params = {
            "format": "jsonv2",
            "lat": f"{lat:.8f}",
            "lon": f"{lng:.8f}",
            "zoom": 18,
            "addressdetails": 1,
        }
        resp = requests.get(
            self.url, params=params, timeout=self.timeout,
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
        )
        resp.raise_for_status()
        data = resp.json()
        return str(data.get("display_name", "") or "")


class AddressResolver:
    """
    Forward and reverse geocoding over pluggable providers.

    Both directions keep a bounded LRU cache: forward by query text, reverse
    by coordinates rounded to 4 decimals (~11m). Failures and empty
    addresses are not cached.

    Usage:
        resolver = AddressResolver([NominatimForwardProvider(...)], GoogleReverseProvider(...))
        match = resolver.forward_geocode("560001, India")
        address = resolver.reverse_geocode(12.97, 77.59)
    """

    def __init__(self, forward_providers: Sequence, reverse_provider=None,
                 cache_size: int = DEFAULT_CACHE_SIZE):
        self.forward_providers = list(forward_providers)
        self.reverse_provider = reverse_provider
        self._forward_cached = lru_cache(maxsize=cache_size)(self._forward_lookup)
        self._reverse_cached = lru_cache(maxsize=cache_size)(self._reverse_lookup)

    def forward_geocode(self, query: str) -> GeocodeResult:
        """
        Return the first match for a free-text or postal-code query.

        Raises:
            GeocodeNoMatch: No provider found anything.
            GeocodeProviderError: No provider matched and at least one failed.
        """
        return self._forward_cached(query.strip())

    def _forward_lookup(self, query: str) -> GeocodeResult:
        last_error = None
        for provider in self.forward_providers:
            try:
                results = provider.search(query)
            except GeocodeProviderError as e:
                logger.warning("Forward geocode via %s failed for %r: %s", provider.name, query, e)
                last_error = e
                continue
            if results:
                match = results[0]
                logger.info(
                    "Geocoded %r via %s: lat=%.4f, lng=%.4f",
                    query, provider.name, match.lat, match.lng,
                )
                return match
            logger.info("No %s match for %r", provider.name, query)

        if last_error is not None:
            raise GeocodeProviderError(str(last_error)) from last_error
        raise GeocodeNoMatch(f"No location found for {query!r}")

    def reverse_geocode(self, lat: float, lng: float) -> str:
        """Return a formatted address, or "" on any failure."""
        if self.reverse_provider is None:
            return ""
        try:
            return self._reverse_cached(*round_coords(lat, lng))
        except GeocodeNoMatch:
            logger.debug("No address for %.6f,%.6f", lat, lng)
            return ""
        except Exception as e:
            logger.warning("Reverse geocode failed for %.6f,%.6f: %s", lat, lng, e)
            return ""

    def _reverse_lookup(self, lat: float, lng: float) -> str:
        address = self.reverse_provider.reverse(lat, lng)
        if not address:
            raise GeocodeNoMatch(f"No address for {lat},{lng}")
        return address


def build_resolver(config: TrackingConfig) -> AddressResolver:
    """Default resolver: Nominatim then offline PIN lookup; Google reverse."""
    return AddressResolver(
        forward_providers=[
            NominatimForwardProvider(
                config.nominatim_url, config.user_agent, config.http_timeout_seconds,
            ),
            PostalCodeForwardProvider("IN"),
        ],
        reverse_provider=GoogleReverseProvider(
            config.google_geocode_url, config.api_key, config.http_timeout_seconds,
        ),
    )
