"""Unit tests for user configuration and logging setup."""

from fracture.config import (
    get_config_path,
    get_default_domain,
    get_domain_overrides,
    load_config,
    save_config,
    set_default_domain,
)
from fracture.logging_config import _build_logging_config


class TestUserConfig:
    """Test TOML config persistence."""

    def test_env_override_path(self, isolated_config):
        assert get_config_path() == isolated_config

    def test_missing_file_is_empty(self, isolated_config):
        assert load_config() == {}
        assert get_default_domain() is None

    def test_default_domain_round_trip(self, isolated_config):
        set_default_domain("clinical")

        assert get_default_domain() == "clinical"
        assert not isolated_config.with_suffix(".toml.tmp").exists()

    def test_set_default_keeps_other_sections(self, isolated_config):
        save_config({"domains": {"market": {"hysteresis_count": 6}}})

        set_default_domain("market")

        assert get_domain_overrides("market") == {"hysteresis_count": 6}
        assert get_default_domain() == "market"

    def test_corrupt_file_is_empty(self, isolated_config):
        isolated_config.write_text("[engine\nbroken")

        assert load_config() == {}


class TestLoggingConfig:
    """Test the dictConfig builder."""

    def test_file_handler_enabled_by_default(self, isolated_config):
        config = _build_logging_config()

        assert set(config["handlers"]) == {"console", "file"}
        assert config["handlers"]["file"]["class"] == (
            "logging.handlers.RotatingFileHandler"
        )
        assert config["root"]["level"] == "INFO"

    def test_file_handler_can_be_disabled(self, isolated_config):
        isolated_config.write_text("[logging]\nenabled = false\n")

        config = _build_logging_config(verbose=True)

        assert set(config["handlers"]) == {"console"}
        assert config["handlers"]["console"]["level"] == "DEBUG"

    def test_user_level_and_size(self, isolated_config):
        isolated_config.write_text('[logging]\nlevel = "warning"\nmax_size_mb = 2\n')

        handler = _build_logging_config()["handlers"]["file"]

        assert handler["level"] == "WARNING"
        assert handler["maxBytes"] == 2 * 1024 * 1024
