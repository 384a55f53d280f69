"""Bus payload normalization."""

from datetime import datetime, timedelta, timezone

import orjson
import pytest

from telemetry_api.domain.reading import ReadingQuality
from telemetry_api.domain.weather import WeatherSource
from telemetry_api.errors import ParseError
from telemetry_api.ingestion.normalizer import (
    decode_object,
    normalize_reading,
    normalize_weather,
    resolve_timestamp,
)

TOPIC = "csir/sensors/S1/data"
RECEIVED = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _json(obj) -> bytes:
    return orjson.dumps(obj)


class TestNormalizeReading:
    def test_top_level_fields_merge_into_data(self):
        payload = _json({
            "sensorId": "S1",
            "name": "Lab",
            "timestamp": "2026-03-01T11:59:00Z",
            "humidity": 50.5,
            "data": {"temperature": 22.4},
        })
        event = normalize_reading(TOPIC, payload, "S1", received_at=RECEIVED)

        assert event.sensor_id == "S1"
        assert event.data == {"humidity": 50.5, "temperature": 22.4}
        assert event.timestamp == datetime(2026, 3, 1, 11, 59, tzinfo=timezone.utc)
        assert "name" not in event.data

    def test_nested_data_wins_conflicts(self):
        payload = _json({"temperature": 1.0, "data": {"temperature": 2.0}})
        event = normalize_reading(TOPIC, payload, "S1", received_at=RECEIVED)
        assert event.data["temperature"] == 2.0

    def test_unknown_fields_are_kept(self):
        payload = _json({"data": {"co2": 412, "status_text": "ok"}})
        event = normalize_reading(TOPIC, payload, "S1", received_at=RECEIVED)
        assert event.data == {"co2": 412, "status_text": "ok"}

    def test_missing_timestamp_uses_receipt_time(self):
        event = normalize_reading(TOPIC, _json({"temperature": 20}), "S1", received_at=RECEIVED)
        assert event.timestamp == RECEIVED

    def test_quality_defaults_to_good(self):
        event = normalize_reading(TOPIC, _json({"temperature": 20, "quality": "weird"}), "S1", received_at=RECEIVED)
        assert event.quality == ReadingQuality.GOOD

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"[1, 2, 3]",
            _json({"data": "temperature=20"}),
            _json({"data": {"label": "no numbers"}}),
            _json({"data": {"flag": True}}),
            _json({"sensorId": "S1"}),
        ],
    )
    def test_malformed_payloads_raise_parse_error(self, payload):
        with pytest.raises(ParseError) as exc:
            normalize_reading(TOPIC, payload, "S1", received_at=RECEIVED)
        assert exc.value.topic == TOPIC


class TestResolveTimestamp:
    def test_far_future_timestamp_replaced(self):
        future = (RECEIVED + timedelta(hours=2)).isoformat()
        assert resolve_timestamp(future, RECEIVED) == RECEIVED

    def test_small_skew_accepted(self):
        ahead = RECEIVED + timedelta(minutes=1)
        assert resolve_timestamp(ahead.isoformat(), RECEIVED) == ahead

    def test_naive_timestamp_treated_as_utc(self):
        assert resolve_timestamp("2026-03-01T10:00:00", RECEIVED) == datetime(2026, 3, 1, 10, tzinfo=timezone.utc)

    def test_garbage_uses_receipt_time(self):
        assert resolve_timestamp("yesterday", RECEIVED) == RECEIVED
        assert resolve_timestamp(12345, RECEIVED) == RECEIVED


class TestNormalizeWeather:
    def test_valid_sample(self):
        payload = _json({
            "latitude": -25.75,
            "longitude": 28.19,
            "temperature": 27.3,
            "windspeed": 12,
            "winddirection": 370,
            "weathercode": 61,
            "is_day": 0,
        })
        sample = normalize_weather("csir/weather/update", payload, received_at=RECEIVED)

        assert sample.source == WeatherSource.IOT
        assert sample.winddirection == 10
        assert sample.weathercode == 61
        assert sample.is_day == 0
        assert sample.weather_description == "Slight rain"
        assert sample.timestamp == RECEIVED

    @pytest.mark.parametrize(
        "body",
        [
            {"longitude": 28.19, "temperature": 20},
            {"latitude": -25.75, "longitude": 28.19},
            {"latitude": 95, "longitude": 28.19, "temperature": 20},
            {"latitude": -25.75, "longitude": 28.19, "temperature": "hot"},
        ],
    )
    def test_invalid_samples_rejected(self, body):
        with pytest.raises(ParseError):
            normalize_weather("csir/weather/update", _json(body), received_at=RECEIVED)


def test_decode_object_accepts_mappings():
    assert decode_object({"a": 1}) == {"a": 1}
