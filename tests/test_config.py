"""Tests for shipper configuration."""

import json

import pytest

from bananas.config import BananasConfig, ConfigError, DEFAULT_INGESTION_HOST


class TestBananasConfig:
    def test_defaults(self):
        config = BananasConfig(token="abc")

        assert config.interval_msec == 1000
        assert config.exclude == []
        assert config.uncaught_exception is False
        assert config.signals is False
        assert config.stop_timeout_msec == 15000
        assert config.tags is None
        assert config.credentials is None
        assert config.ingestion_host == DEFAULT_INGESTION_HOST

    def test_missing_token(self):
        with pytest.raises(ConfigError, match="Missing Loggly API token"):
            BananasConfig()

    def test_empty_token(self):
        with pytest.raises(ConfigError):
            BananasConfig(token="")

    def test_non_positive_interval(self):
        with pytest.raises(ConfigError):
            BananasConfig(token="abc", interval_msec=0)

    def test_non_positive_stop_timeout(self):
        with pytest.raises(ConfigError):
            BananasConfig(token="abc", stop_timeout_msec=-1)

    def test_uri(self):
        config = BananasConfig(token="abc")
        assert config.uri == "https://logs-01.loggly.com/bulk/abc"

    def test_uri_custom_host(self):
        config = BananasConfig(token="abc", ingestion_host="logs.example.com")
        assert config.uri == "https://logs.example.com/bulk/abc"

    def test_seconds(self):
        config = BananasConfig(token="abc", interval_msec=250, stop_timeout_msec=2000)
        assert config.interval_seconds == 0.25
        assert config.stop_timeout_seconds == 2.0

    def test_tags_copied(self):
        tags = ["api", "prod"]
        config = BananasConfig(token="abc", tags=tags)
        tags.append("mutated")
        assert config.tags == ["api", "prod"]


class TestConfigLoading:
    def test_from_dict_camel_case(self):
        config = BananasConfig.from_dict({
            "token": "abc",
            "intervalMsec": 50,
            "uncaughtException": True,
            "stopTimeoutMsec": 100,
            "signals": True,
            "exclude": ["/health"],
        })

        assert config.interval_msec == 50
        assert config.uncaught_exception is True
        assert config.stop_timeout_msec == 100
        assert config.signals is True
        assert config.exclude == ["/health"]

    def test_from_dict_snake_case(self):
        config = BananasConfig.from_dict({"token": "abc", "interval_msec": 75})
        assert config.interval_msec == 75

    def test_from_dict_unknown_option(self):
        with pytest.raises(ConfigError, match="Unknown option"):
            BananasConfig.from_dict({"token": "abc", "root": True})

    def test_from_dict_missing_token(self):
        with pytest.raises(ConfigError):
            BananasConfig.from_dict({"intervalMsec": 50})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "bananas.yaml"
        path.write_text(
            "bananas:\n"
            "  token: abc\n"
            "  intervalMsec: 500\n"
            "  tags: [api, prod]\n"
        )

        config = BananasConfig.from_yaml(str(path))
        assert config.token == "abc"
        assert config.interval_msec == 500
        assert config.tags == ["api", "prod"]

    def test_from_json(self, tmp_path):
        path = tmp_path / "bananas.json"
        path.write_text(json.dumps({"token": "abc", "exclude": ["/ping"]}))

        config = BananasConfig.from_json(str(path))
        assert config.exclude == ["/ping"]
