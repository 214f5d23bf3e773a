"""
Tests for the Open-Meteo current-conditions provider.

HTTP is served by ``httpx.MockTransport``; backoff sleeps are recorded
instead of awaited.
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from agroforecast.core.errors import ExternalSourceUnavailableError
from agroforecast.ingestion.open_meteo import OpenMeteoProvider, parse_current
from agroforecast.ml.models import Location

PAYLOAD = {
    "current": {
        "time": "2024-07-15T12:00",
        "temperature_2m": 29.4,
        "relative_humidity_2m": 78,
        "precipitation": 3.2,
        "surface_pressure": 1006.5,
        "wind_speed_10m": 14.0,
        "cloud_cover": 65,
        "shortwave_radiation": 410.0,
    }
}


class _Recorder:
    def __init__(self):
        self.sleeps = []
        self.requests = []

    async def sleep(self, seconds):
        self.sleeps.append(seconds)


def _provider(responses, recorder):
    """Provider whose transport replays ``responses`` (status, body) in order."""
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        recorder.requests.append(request)
        status, body = queue.pop(0)
        if isinstance(body, dict):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenMeteoProvider(base_url="https://meteo.test/v1", client=client, sleep=recorder.sleep)


# ═══════════════════════════════════════════════════════════════════════════
# Payload parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestParseCurrent:
    def test_full_payload(self):
        obs = parse_current(PAYLOAD)
        assert obs.temperature == 29.4
        assert obs.humidity == 78.0
        assert obs.rainfall == 3.2
        assert obs.pressure == 1006.5
        assert obs.cloud_cover == 65
        assert obs.recorded_at == datetime(2024, 7, 15, 12, 0, tzinfo=timezone.utc)

    def test_sea_level_pressure_fallback(self):
        current = {k: v for k, v in PAYLOAD["current"].items() if k != "surface_pressure"}
        current["pressure_msl"] = 1011.0
        assert parse_current({"current": current}).pressure == 1011.0

    def test_missing_precipitation_is_zero(self):
        current = {k: v for k, v in PAYLOAD["current"].items() if k != "precipitation"}
        assert parse_current({"current": current}).rainfall == 0.0

    @pytest.mark.parametrize("missing", ["temperature_2m", "relative_humidity_2m"])
    def test_required_fields(self, missing):
        current = {k: v for k, v in PAYLOAD["current"].items() if k != missing}
        with pytest.raises(ExternalSourceUnavailableError):
            parse_current({"current": current})

    def test_no_current_block(self):
        with pytest.raises(ExternalSourceUnavailableError):
            parse_current({})


# ═══════════════════════════════════════════════════════════════════════════
# HTTP behaviour
# ═══════════════════════════════════════════════════════════════════════════

class TestOpenMeteoProvider:
    def test_request_parameters(self, run, pune):
        recorder = _Recorder()
        provider = _provider([(200, PAYLOAD)], recorder)

        async def go():
            try:
                return await provider.current(pune)
            finally:
                await provider.close()

        obs = run(go())
        assert obs.temperature == 29.4
        url = recorder.requests[0].url
        assert url.path == "/v1/forecast"
        assert url.params["latitude"] == "18.52"
        assert "temperature_2m" in url.params["current"]

    def test_retries_server_errors(self, run, pune):
        recorder = _Recorder()
        provider = _provider([(503, "busy"), (429, "slow down"), (200, PAYLOAD)], recorder)
        obs = run(provider.current(pune))
        assert obs.humidity == 78.0
        assert recorder.sleeps == [0.5, 1.0]

    def test_gives_up_after_retries(self, run, pune):
        recorder = _Recorder()
        provider = _provider([(500, "down")] * 3, recorder)
        with pytest.raises(ExternalSourceUnavailableError):
            run(provider.current(pune))
        assert len(recorder.requests) == 3

    def test_client_error_fails_fast(self, run, pune):
        recorder = _Recorder()
        provider = _provider([(400, "bad latitude")], recorder)
        with pytest.raises(ExternalSourceUnavailableError) as exc:
            run(provider.current(pune))
        assert len(recorder.requests) == 1
        assert recorder.sleeps == []
        assert exc.value.status_code == 502

    def test_invalid_json(self, run, pune):
        recorder = _Recorder()
        provider = _provider([(200, "<html>")], recorder)
        with pytest.raises(ExternalSourceUnavailableError):
            run(provider.current(pune))

    def test_location_without_coordinates(self, run):
        recorder = _Recorder()
        provider = _provider([], recorder)
        with pytest.raises(ExternalSourceUnavailableError):
            run(provider.current(Location("Nowhere")))
        assert recorder.requests == []
