"""Persistence gateway against an in-memory SQLite store."""

from datetime import timedelta

import pytest
from sqlalchemy.dialects import sqlite
from sqlalchemy.schema import CreateIndex

from telemetry_api.domain.reading import ReadingEvent
from telemetry_api.domain.weather import WeatherSample, WeatherSource
from telemetry_api.errors import ConflictError, NotFoundError, ValidationError
from telemetry_api.persistence.models import ReadingRow, WeatherSampleRow

from conftest import T0, make_event, make_sensor


# =============================================================================
# Sensors
# =============================================================================

class TestSensors:
    def test_create_and_get(self, gateway):
        created = gateway.create_sensor(make_sensor("S-001", configuration={"readingInterval": 1000}))

        fetched = gateway.get_sensor("S-001")
        assert fetched is not None
        assert fetched.sensor_id == created.sensor_id
        assert fetched.location["name"] == "Pretoria"
        assert fetched.configuration == {"readingInterval": 1000}
        assert fetched.created_at is not None

    def test_duplicate_sensor_id_conflicts(self, gateway):
        gateway.create_sensor(make_sensor("S-001"))
        with pytest.raises(ConflictError):
            gateway.create_sensor(make_sensor("S-001"))

    def test_update_cannot_change_sensor_id(self, gateway, sensor):
        with pytest.raises(ValidationError) as exc:
            gateway.update_sensor(sensor.sensor_id, {"sensor_id": "OTHER"})
        assert exc.value.details[0]["field"] == "sensorId"

    def test_update_fields(self, gateway, sensor):
        updated = gateway.update_sensor(sensor.sensor_id, {"name": "Renamed", "is_active": False})
        assert updated.name == "Renamed"
        assert updated.is_active is False
        assert gateway.count_sensors(is_active=True) == 0

    def test_update_unknown_sensor(self, gateway):
        with pytest.raises(NotFoundError):
            gateway.update_sensor("missing", {"name": "x"})

    def test_delete_cascades_to_readings(self, gateway, sensor, recent):
        gateway.insert_reading(make_event(sensor.sensor_id, recent))
        gateway.insert_reading(make_event(sensor.sensor_id, recent + timedelta(seconds=5)))
        gateway.insert_reading(make_event("OTHER", recent))

        assert gateway.delete_sensor(sensor.sensor_id) == 2
        assert gateway.get_sensor(sensor.sensor_id) is None
        assert gateway.count_readings() == 1

    def test_delete_unknown_sensor(self, gateway):
        with pytest.raises(NotFoundError):
            gateway.delete_sensor("missing")

    def test_touch_last_reading_never_moves_backwards(self, gateway, sensor):
        assert gateway.touch_last_reading(sensor.sensor_id, T0) is True
        assert gateway.touch_last_reading(sensor.sensor_id, T0 - timedelta(minutes=1)) is False
        assert gateway.get_sensor(sensor.sensor_id).last_reading_at == T0

    def test_record_sensor_status(self, gateway, sensor):
        assert gateway.record_sensor_status(sensor.sensor_id, {"status": "online"}) is True
        assert gateway.get_sensor(sensor.sensor_id).metadata["status"] == {"status": "online"}
        assert gateway.record_sensor_status("unknown", {"status": "online"}) is False


# =============================================================================
# Pagination
# =============================================================================

class TestPagination:
    def test_second_page_of_readings(self, gateway, sensor):
        for i in range(25):
            gateway.insert_reading(make_event(sensor.sensor_id, T0 + timedelta(seconds=i), temperature=float(i)))

        readings, total = gateway.list_readings(sensor_id=sensor.sensor_id, page=2, limit=10)

        assert total == 25
        assert len(readings) == 10
        # Newest first: page 2 holds the 11th..20th newest readings.
        assert [r.data["temperature"] for r in readings] == [float(i) for i in range(14, 4, -1)]

    def test_page_past_the_end_is_empty(self, gateway, sensor):
        gateway.insert_reading(make_event(sensor.sensor_id, T0))
        readings, total = gateway.list_readings(page=5, limit=10)
        assert readings == []
        assert total == 1

    def test_sensor_filters(self, gateway):
        gateway.create_sensor(make_sensor("S-A", type="temperature"))
        gateway.create_sensor(make_sensor("S-B", type="humidity", is_active=False))
        gateway.create_sensor(make_sensor("S-C", type="temperature"))

        sensors, total = gateway.list_sensors(type="temperature")
        assert total == 2
        assert {s.sensor_id for s in sensors} == {"S-A", "S-C"}

        sensors, total = gateway.list_sensors(is_active=False)
        assert [s.sensor_id for s in sensors] == ["S-B"]


# =============================================================================
# Readings
# =============================================================================

class TestReadings:
    def test_empty_data_rejected(self, gateway):
        with pytest.raises(ValidationError):
            gateway.insert_reading(ReadingEvent(sensor_id="S", timestamp=T0, data={}))

    def test_time_range_is_inclusive_and_descending(self, gateway, sensor):
        for minutes in (0, 10, 20, 30):
            gateway.insert_reading(make_event(sensor.sensor_id, T0 + timedelta(minutes=minutes)))

        found = gateway.find_readings_by_time_range(
            sensor.sensor_id, T0 + timedelta(minutes=10), T0 + timedelta(minutes=20)
        )
        assert [r.timestamp for r in found] == [T0 + timedelta(minutes=20), T0 + timedelta(minutes=10)]

    def test_submitted_reading_found_exactly_once(self, gateway, sensor):
        stored = gateway.insert_reading(make_event(sensor.sensor_id, T0, temperature=19.5))
        found = gateway.find_readings_by_time_range(sensor.sensor_id, T0 - timedelta(minutes=1), T0 + timedelta(minutes=1))
        assert [r.id for r in found] == [stored.id]

    def test_latest_per_sensor_one_entry_each(self, gateway):
        for sid in ("S-1", "S-2"):
            for minutes in (0, 5, 3):
                gateway.insert_reading(make_event(sid, T0 + timedelta(minutes=minutes), temperature=float(minutes)))

        latest = gateway.find_latest_reading_per_sensor()

        assert [r.sensor_id for r in latest] == ["S-1", "S-2"]
        assert all(r.timestamp == T0 + timedelta(minutes=5) for r in latest)

    def test_latest_tie_broken_by_insertion_order(self, gateway):
        gateway.insert_reading(make_event("S-1", T0, temperature=1.0))
        second = gateway.insert_reading(make_event("S-1", T0, temperature=2.0))

        (latest,) = gateway.find_latest_reading_per_sensor()
        assert latest.id == second.id

    def test_latest_per_sensor_idempotent(self, gateway):
        gateway.insert_reading(make_event("S-1", T0))
        gateway.insert_reading(make_event("S-2", T0 + timedelta(seconds=1)))

        assert gateway.find_latest_reading_per_sensor() == gateway.find_latest_reading_per_sensor()

    def test_aggregate_skips_missing_and_non_numeric(self, gateway, sensor):
        gateway.insert_reading(make_event(sensor.sensor_id, T0, temperature=10.0, humidity=40.0))
        gateway.insert_reading(make_event(sensor.sensor_id, T0 + timedelta(minutes=1), temperature=20.0))
        gateway.insert_reading(make_event(sensor.sensor_id, T0 + timedelta(minutes=2), temperature="n/a", humidity=60.0))

        stats = gateway.aggregate_statistics(sensor_id=sensor.sensor_id, fields=["temperature", "humidity", "pressure"])

        assert stats["readingCount"] == 3
        assert stats["fields"]["temperature"] == {"avg": 15.0, "min": 10.0, "max": 20.0, "count": 2}
        assert stats["fields"]["humidity"]["avg"] == 50.0
        assert stats["fields"]["pressure"] == {"avg": None, "min": None, "max": None, "count": 0}

    def test_aggregate_window(self, gateway, sensor):
        gateway.insert_reading(make_event(sensor.sensor_id, T0 - timedelta(hours=2), temperature=100.0))
        gateway.insert_reading(make_event(sensor.sensor_id, T0, temperature=10.0))

        stats = gateway.aggregate_statistics(sensor_id=sensor.sensor_id, since=T0 - timedelta(hours=1))
        assert stats["fields"]["temperature"]["max"] == 10.0


class TestOrphanPurge:
    def test_only_old_orphans_are_purged(self, gateway, sensor):
        gateway.insert_reading(make_event(sensor.sensor_id, T0 - timedelta(days=40)))
        gateway.insert_reading(make_event("ORPHAN", T0 - timedelta(days=40)))
        gateway.insert_reading(make_event("ORPHAN", T0))

        assert gateway.purge_orphan_readings(T0 - timedelta(days=30)) == 1
        assert gateway.count_readings() == 2


# =============================================================================
# Weather
# =============================================================================

class TestWeather:
    def _sample(self, at, lat=-25.75, lon=28.19, temperature=20.0, windspeed=10.0):
        return WeatherSample(
            timestamp=at,
            latitude=lat,
            longitude=lon,
            temperature=temperature,
            windspeed=windspeed,
            source=WeatherSource.IOT,
        )

    def test_history_filters_location_and_window(self, gateway, recent):
        gateway.insert_weather_sample(self._sample(recent))
        gateway.insert_weather_sample(self._sample(recent + timedelta(minutes=5), lat=-25.80))
        gateway.insert_weather_sample(self._sample(recent, lat=-33.92, lon=18.42))
        gateway.insert_weather_sample(self._sample(recent - timedelta(hours=30)))

        history = gateway.find_weather_history(-25.75, 28.19, hours=24)

        assert len(history) == 2
        assert history[0].timestamp > history[1].timestamp
        assert all(s.id is not None for s in history)

    def test_statistics(self, gateway, recent):
        gateway.insert_weather_sample(self._sample(recent, temperature=18.0, windspeed=4.0))
        gateway.insert_weather_sample(self._sample(recent, temperature=22.0, windspeed=8.0))

        stats = gateway.aggregate_weather_statistics(-25.75, 28.19, hours=24)

        assert stats == {
            "avgTemperature": 20.0,
            "minTemperature": 18.0,
            "maxTemperature": 22.0,
            "avgWindspeed": 6.0,
            "count": 2,
        }

    def test_statistics_with_no_samples(self, gateway):
        stats = gateway.aggregate_weather_statistics(0.0, 0.0)
        assert stats["count"] == 0
        assert stats["avgTemperature"] is None

    def test_latest_weather_limit(self, gateway, recent):
        for i in range(5):
            gateway.insert_weather_sample(self._sample(recent + timedelta(minutes=i), temperature=float(i)))
        latest = gateway.find_latest_weather(limit=2)
        assert [s.temperature for s in latest] == [4.0, 3.0]


# =============================================================================
# Schema
# =============================================================================

class TestSchema:
    @pytest.mark.parametrize(
        "table, index_name, expected",
        [
            (ReadingRow, "ix_readings_sensor_ts", "(sensor_id, timestamp DESC)"),
            (WeatherSampleRow, "ix_weather_location_ts", "(latitude, longitude, timestamp DESC)"),
        ],
    )
    def test_time_indexes_are_newest_first(self, gateway, table, index_name, expected):
        (index,) = [i for i in table.__table__.indexes if i.name == index_name]
        ddl = str(CreateIndex(index).compile(dialect=sqlite.dialect()))
        assert ddl.replace("\"", "").endswith(expected)
