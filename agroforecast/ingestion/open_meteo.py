"""
Open-Meteo current-conditions provider.

Used opportunistically to seed a forecast with a fresh snapshot when the
caller supplied none. Any failure surfaces as
ExternalSourceUnavailableError; the advisory service logs it and carries
on with stored history.

Request:
    GET {OPEN_METEO_BASE_URL}/forecast?latitude=..&longitude=..&current=<fields>

Response fields used (``current`` block):
    temperature_2m         °C
    relative_humidity_2m   %
    precipitation          mm
    surface_pressure       hPa   (pressure_msl when absent)
    wind_speed_10m         km/h
    cloud_cover            %
    shortwave_radiation    W/m²

Retries: HTTP 429, 5xx and transport errors are retried with exponential
backoff (0.5s, 1s); other 4xx fail immediately.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from agroforecast.core.config import Settings, settings as default_settings
from agroforecast.core.errors import ExternalSourceUnavailableError
from agroforecast.ml.models import Location, WeatherObservation

logger = logging.getLogger(__name__)

SOURCE = "open-meteo"
CURRENT_FIELDS = (
    "temperature_2m",
    "relative_humidity_2m",
    "precipitation",
    "surface_pressure",
    "pressure_msl",
    "wind_speed_10m",
    "cloud_cover",
    "shortwave_radiation",
)
MAX_RETRIES = 2
RETRY_BACKOFF_BASE = 0.5  # seconds
DEFAULT_PRESSURE = 1013.0


def parse_current(data: Dict[str, Any]) -> WeatherObservation:
    """Build an observation from an Open-Meteo ``current`` payload."""
    current = data.get("current") or {}
    if current.get("temperature_2m") is None or current.get("relative_humidity_2m") is None:
        raise ExternalSourceUnavailableError(SOURCE, "response has no current temperature/humidity")

    raw_time = current.get("time")
    recorded_at = datetime.fromisoformat(raw_time) if raw_time else datetime.now(timezone.utc)
    if recorded_at.tzinfo is None:
        recorded_at = recorded_at.replace(tzinfo=timezone.utc)

    pressure = current.get("surface_pressure")
    if pressure is None:
        pressure = current.get("pressure_msl", DEFAULT_PRESSURE)

    return WeatherObservation(
        temperature=float(current["temperature_2m"]),
        humidity=float(current["relative_humidity_2m"]),
        rainfall=float(current.get("precipitation") or 0.0),
        pressure=float(pressure if pressure is not None else DEFAULT_PRESSURE),
        recorded_at=recorded_at,
        wind_speed=current.get("wind_speed_10m"),
        cloud_cover=current.get("cloud_cover"),
        solar_radiation=current.get("shortwave_radiation"),
    )


class OpenMeteoProvider:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
        sleep=asyncio.sleep,
    ):
        cfg = config or default_settings
        self.base_url = (base_url or cfg.OPEN_METEO_BASE_URL).rstrip("/")
        self.timeout = timeout or cfg.WEATHER_FETCH_TIMEOUT
        self._http_client = client
        self._sleep = sleep

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def current(self, location: Location) -> WeatherObservation:
        """Fetch the current snapshot for ``location`` (needs coordinates)."""
        if location.latitude is None or location.longitude is None:
            raise ExternalSourceUnavailableError(SOURCE, "location has no coordinates", location=location.name)

        params = {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "current": ",".join(CURRENT_FIELDS),
            "timezone": "UTC",
        }
        data = await self._fetch_json(f"{self.base_url}/forecast", params, location.name)
        observation = parse_current(data)
        logger.info(
            "Fetched current conditions for %s (%.1f°C)", location.name, observation.temperature,
            extra={"location": location.name},
        )
        return observation

    async def _fetch_json(self, url: str, params: Dict[str, Any], location_name: str) -> Dict[str, Any]:
        client = await self._get_client()
        last_error: Optional[Exception] = None

        for attempt in range(MAX_RETRIES + 1):
            if attempt > 0:
                wait = RETRY_BACKOFF_BASE * (2 ** (attempt - 1))
                logger.warning("Retry %d/%d after %.1fs: %s", attempt, MAX_RETRIES, wait, last_error)
                await self._sleep(wait)
            try:
                response = await client.get(url, params=params)
            except httpx.HTTPError as e:
                last_error = e
                continue

            if response.status_code == 200:
                try:
                    return response.json()
                except ValueError as e:
                    raise ExternalSourceUnavailableError(SOURCE, f"invalid JSON: {e}") from e
            if response.status_code == 429 or response.status_code >= 500:
                last_error = RuntimeError(f"HTTP {response.status_code}")
                continue
            raise ExternalSourceUnavailableError(
                SOURCE, f"HTTP {response.status_code}: {response.text[:200]}",
                location=location_name, status=response.status_code,
            )

        raise ExternalSourceUnavailableError(
            SOURCE, f"failed after {MAX_RETRIES + 1} attempts: {last_error}", location=location_name,
        )
