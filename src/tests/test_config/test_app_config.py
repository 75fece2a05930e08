"""
Tests for the Config class (sections, overrides, validation)
"""

import json

import pytest

from config import Config, ConfigError, _safe_float_env, _safe_int_env


def _config(**kwargs):
    return Config(validate=False, ensure_directories=False, **kwargs)


class TestEnvHelpers:
    def test_int_env_is_clamped(self, monkeypatch):
        monkeypatch.setenv("PLINKO_TEST_INT", "5000")
        assert _safe_int_env("PLINKO_TEST_INT", 10, 1, 1000) == 1000

    def test_invalid_int_env_falls_back(self, monkeypatch):
        monkeypatch.setenv("PLINKO_TEST_INT", "ten")
        assert _safe_int_env("PLINKO_TEST_INT", 10) == 10

    def test_float_env(self, monkeypatch):
        monkeypatch.setenv("PLINKO_TEST_FLOAT", "0.25")
        assert _safe_float_env("PLINKO_TEST_FLOAT", 1.0, 0.0, 1.0) == 0.25
        monkeypatch.setenv("PLINKO_TEST_FLOAT", "nope")
        assert _safe_float_env("PLINKO_TEST_FLOAT", 1.0) == 1.0

    def test_unset_env_uses_default(self, monkeypatch):
        monkeypatch.delenv("PLINKO_TEST_INT", raising=False)
        assert _safe_int_env("PLINKO_TEST_INT", 3) == 3


class TestDefaults:
    def test_default_config_is_valid(self):
        _config().validate()

    def test_default_sections(self):
        config = _config()
        assert config.BATCHING["flush_poll_interval"] == 0.1
        assert config.BOARD["default_bucket_count"] == 13
        assert config.ANTI_CHEAT["suspicious_flags_before_reject"] == 20
        assert len(config.LEVELS) == 4

    def test_level_lookup_is_clamped(self):
        config = _config()
        assert config.get_level_config(1).multiplier == 2.0
        assert config.get_level_config(50).bucket_count == 17
        assert len(config.get_level_table()) == 4

    def test_instances_do_not_share_sections(self):
        a = _config()
        b = _config()
        a.BATCHING["batch_size"] = 99
        a.LEVELS[0]["multiplier"] = 9.0
        assert b.BATCHING["batch_size"] != 99
        assert b.LEVELS[0]["multiplier"] == 1.0

    def test_state_dir_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PLINKO_STATE_DIR", str(tmp_path / "state"))
        monkeypatch.delenv("PLINKO_LOG_DIR", raising=False)
        config = _config()
        assert config.FILES["state_dir"] == tmp_path / "state"
        assert config.FILES["preferences_file"] == tmp_path / "state" / "preferences.json"
        assert config.FILES["log_dir"] == tmp_path / "state" / "logs"

    def test_ensure_directories(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PLINKO_STATE_DIR", str(tmp_path / "state"))
        monkeypatch.delenv("PLINKO_LOG_DIR", raising=False)
        config = Config(validate=True, ensure_directories=True)
        assert (tmp_path / "state" / "logs").is_dir()


class TestValidation:
    def test_bad_values_are_collected(self):
        config = _config()
        config.BATCHING["batch_size"] = 0
        config.NETWORK["max_latency_ms"] = -1
        config.BOARD["spawn_right"] = config.BOARD["spawn_left"]

        with pytest.raises(ConfigError) as exc_info:
            config.validate()

        message = str(exc_info.value)
        assert "batch_size must be at least 1" in message
        assert "max_latency_ms must be >= min_latency_ms" in message
        assert "spawn_right must be greater than spawn_left" in message

    def test_levels_must_have_buckets(self):
        config = _config()
        config.LEVELS = [{"rewards": [], "multiplier": 1.0}]
        with pytest.raises(ConfigError, match="Level 0 has no buckets"):
            config.validate()

    def test_at_least_one_level(self):
        config = _config()
        config.LEVELS = []
        with pytest.raises(ConfigError, match="At least one level"):
            config.validate()

    def test_error_rate_range(self):
        config = _config()
        config.NETWORK["error_rate"] = 1.5
        with pytest.raises(ConfigError, match="error_rate"):
            config.validate()

    def test_invalid_log_level(self):
        config = _config()
        config.LOGGING["level"] = "CHATTY"
        with pytest.raises(ConfigError, match="Invalid log level"):
            config.validate()


class TestFileOverrides:
    def test_load_overrides_sections(self, tmp_path):
        path = tmp_path / "plinko.json"
        path.write_text(
            json.dumps(
                {
                    "batching": {"batch_size": 25},
                    "anti_cheat": {"max_balls_per_minute": 60},
                    "levels": [{"rewards": [5, 1, 5], "multiplier": 1.0}],
                }
            )
        )

        config = _config(config_file=str(path))

        assert config.BATCHING["batch_size"] == 25
        assert config.BATCHING["max_retries"] == 3
        assert config.ANTI_CHEAT["max_balls_per_minute"] == 60
        assert config.get_level_config(0).bucket_count == 3

    def test_missing_file_is_ignored(self, tmp_path):
        config = _config(config_file=str(tmp_path / "absent.json"))
        assert config.BATCHING["batch_size"] >= 1

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{oops")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            _config(config_file=str(path))

    def test_non_object_raises(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError):
            _config(config_file=str(path))

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "out" / "plinko.json"
        original = _config()
        original.set("session", "duration_minutes", 5.0)
        original.save_to_file(path)

        reloaded = _config(config_file=str(path))
        assert reloaded.SESSION["duration_minutes"] == 5.0
        assert reloaded.to_dict()["levels"] == original.to_dict()["levels"]


class TestAccessors:
    def test_get_and_set(self):
        config = _config()
        config.set("network", "error_rate", 0.5)
        assert config.get("network", "error_rate") == 0.5
        assert config.get("network", "missing", "fallback") == "fallback"
        assert config.get("nonexistent", "key", 7) == 7

    def test_set_unknown_section_raises(self):
        with pytest.raises(ConfigError):
            _config().set("nonexistent", "key", 1)

    def test_to_dict_is_json_serializable(self):
        data = _config().to_dict()
        json.dumps(data)
        assert set(data) >= {"batching", "network", "session", "board", "anti_cheat", "levels", "logging", "files"}
