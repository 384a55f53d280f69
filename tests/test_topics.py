"""Topic scheme, wildcard matching and most-specific routing."""

import pytest

from telemetry_api.domain.topics import (
    TopicRouter,
    TopicScheme,
    sensor_room,
    specificity,
    topic_matches,
    validate_pattern,
)


class TestTopicMatching:
    @pytest.mark.parametrize(
        "pattern,topic,expected",
        [
            ("csir/sensors/+/data", "csir/sensors/S1/data", True),
            ("csir/sensors/+/data", "csir/sensors/S1/status", False),
            ("csir/sensors/+/data", "csir/sensors/S1/data/extra", False),
            ("csir/#", "csir/weather/update", True),
            ("csir/#", "csir", True),
            ("csir/weather/update", "csir/weather/update", True),
            ("csir/weather/update", "other/weather/update", False),
            ("+/+", "a/b", True),
            ("+/+", "a", False),
        ],
    )
    def test_topic_matches(self, pattern, topic, expected):
        assert topic_matches(pattern, topic) is expected

    def test_literal_beats_wildcards(self):
        assert specificity("csir/sensors/S1/data") > specificity("csir/sensors/+/data")
        assert specificity("csir/sensors/+/data") > specificity("csir/#")

    @pytest.mark.parametrize("pattern", ["csir/#/data", "csir/sens+rs/x", "csir/a#"])
    def test_invalid_patterns_rejected(self, pattern):
        with pytest.raises(ValueError):
            validate_pattern(pattern)


class TestTopicRouter:
    def test_resolves_most_specific(self):
        router = TopicRouter()
        router.register("csir/#", "catch-all")
        router.register("csir/sensors/+/data", "data")
        router.register("csir/sensors/S9/data", "s9")

        assert router.resolve("csir/sensors/S1/data") == "data"
        assert router.resolve("csir/sensors/S9/data") == "s9"
        assert router.resolve("csir/system/alerts") == "catch-all"
        assert router.resolve("elsewhere/x") is None

    def test_re_registering_replaces_target(self):
        router = TopicRouter()
        router.register("a/+", 1)
        router.register("a/+", 2)
        assert router.patterns == ["a/+"]
        assert router.resolve("a/b") == 2


class TestTopicScheme:
    def test_patterns_follow_root(self):
        scheme = TopicScheme("plant/7")
        assert scheme.sensor_data == "plant/7/sensors/+/data"
        assert scheme.weather_update == "plant/7/weather/update"
        assert scheme.sensor_data_topic("X") == "plant/7/sensors/X/data"

    def test_sensor_id_from_topic(self):
        scheme = TopicScheme("csir")
        assert scheme.sensor_id_from_topic("csir/sensors/SENSOR-CPT-001/data") == "SENSOR-CPT-001"
        assert scheme.sensor_id_from_topic("csir/sensors/SENSOR-CPT-001/status") == "SENSOR-CPT-001"
        assert scheme.sensor_id_from_topic("csir/weather/update") is None
        assert scheme.sensor_id_from_topic("other/sensors/X/data") is None
        assert scheme.sensor_id_from_topic("csir/sensors//data") is None

    def test_sensor_room_name(self):
        assert sensor_room("S1") == "sensor:S1"
