"""Tests for configuration management."""

import pytest
from pathlib import Path

import yaml
from pydantic import ValidationError

from prometheus_puppetdb.config import (
    DEFAULT_QUERY,
    Config,
    ConfigError,
    LoggingConfig,
    apply_overrides,
    get_default_config,
    load_config,
    parse_duration,
    parse_labels,
)


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize("value,expected", [
        (5, 5.0),
        (2.5, 2.5),
        ("10", 10.0),
        ("5s", 5.0),
        ("500ms", 0.5),
        ("2m", 120.0),
        ("1m30s", 90.0),
        ("1h", 3600.0),
    ])
    def test_valid_durations(self, value, expected):
        """Test numbers and Go-style durations."""
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "abc", "5x", "s5", "5s garbage"])
    def test_invalid_durations(self, value):
        """Test malformed durations raise ValueError."""
        with pytest.raises(ValueError):
            parse_duration(value)

    @pytest.mark.parametrize("value", [None, True, [5], {"s": 5}])
    def test_non_scalar_raises_value_error(self, value):
        """Test values that are neither strings nor numbers raise ValueError."""
        with pytest.raises(ValueError):
            parse_duration(value)

    @pytest.mark.parametrize("value", ["nan", "inf", "-inf", float("nan"), float("inf"), "1e400", 10 ** 400])
    def test_non_finite_raises_value_error(self, value):
        """Test NaN, infinity and overflowing values are rejected."""
        with pytest.raises(ValueError):
            parse_duration(value)


class TestParseLabels:
    """Tests for parse_labels."""

    def test_comma_separated(self):
        """Test comma separated pairs."""
        assert parse_labels("a=b, c=d") == {"a": "b", "c": "d"}

    def test_list_of_pairs(self):
        """Test repeated flag values."""
        assert parse_labels(["a=b", "c=d,e=f"]) == {"a": "b", "c": "d", "e": "f"}

    def test_missing_equals_raises_error(self):
        """Test pairs without '=' are rejected."""
        with pytest.raises(ValueError):
            parse_labels("novalue")


class TestLoggingConfig:
    """Tests for LoggingConfig validation."""

    def test_lowercase_log_level_normalized(self):
        """Test lowercase log level is normalized to uppercase."""
        config = LoggingConfig(level="debug")
        assert config.level == "DEBUG"

    def test_invalid_log_level_raises_error(self):
        """Test invalid log level raises ValidationError."""
        with pytest.raises(ValidationError):
            LoggingConfig(level="INFOO")

    def test_file_defaults_to_none(self):
        """Test no log file by default."""
        assert LoggingConfig().file is None


class TestConfig:
    """Tests for main Config validation."""

    def test_default_config(self):
        """Test default configuration values."""
        config = Config()
        assert config.puppetdb_url == "http://puppetdb:8080"
        assert config.query == DEFAULT_QUERY
        assert config.output == "stdout"
        assert config.file == "/etc/prometheus/targets/prometheus-puppetdb/targets.yml"
        assert config.configmap == "prometheus-puppetdb"
        assert config.namespace == "default"
        assert config.sleep == 5.0
        assert config.ssl_skip_verify is False

    def test_https_url(self):
        """Test https URLs are accepted."""
        config = Config(puppetdb_url="https://puppetdb.example.com:8081/")
        assert config.puppetdb_url == "https://puppetdb.example.com:8081"
        assert config.is_https is True

    def test_ftp_url_raises_error(self):
        """Test non-http schemes are rejected."""
        with pytest.raises(ValidationError, match="not a valid http scheme"):
            Config(puppetdb_url="ftp://puppetdb:8080")

    def test_url_without_host_raises_error(self):
        """Test URL without host raises ValidationError."""
        with pytest.raises(ValidationError):
            Config(puppetdb_url="http://")

    @pytest.mark.parametrize("output", ["stdout", "file", "configmap", "external-services"])
    def test_valid_outputs(self, output):
        """Test every supported output name."""
        assert Config(output=output).output == output

    @pytest.mark.parametrize("output", ["", "syslog"])
    def test_invalid_output_raises_error(self, output):
        """Test unknown or empty output names are rejected."""
        with pytest.raises(ValidationError):
            Config(output=output)

    def test_sleep_duration_string(self):
        """Test sleep accepts duration strings."""
        assert Config(sleep="1m").sleep == 60.0

    def test_sleep_zero_raises_error(self):
        """Test sleep must be positive."""
        with pytest.raises(ValidationError):
            Config(sleep=0)

    @pytest.mark.parametrize("sleep", ["nan", "inf", float("inf"), None])
    def test_sleep_non_finite_raises_error(self, sleep):
        """Test sleep rejects NaN, infinity and null."""
        with pytest.raises(ValidationError):
            Config(sleep=sleep)

    def test_object_labels_string(self):
        """Test object labels accept key=value strings."""
        config = Config(object_labels="app=puppetdb,team=ops")
        assert config.object_labels == {"app": "puppetdb", "team": "ops"}


class TestGetDefaultConfig:
    """Tests for get_default_config function."""

    def test_returns_config(self):
        """Test get_default_config returns Config instance."""
        config = get_default_config()
        assert isinstance(config, Config)
        assert config.logging.level == "INFO"


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_nonexistent_file_returns_defaults(self, tmp_path):
        """Test loading nonexistent file returns defaults."""
        config = load_config(tmp_path / "nonexistent.yaml")
        assert config.puppetdb_url == "http://puppetdb:8080"

    def test_load_valid_config(self, tmp_path):
        """Test loading valid config file."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.dump({
            "puppetdb_url": "https://puppetdb.test:8081",
            "output": "configmap",
            "sleep": "30s",
        }))

        config = load_config(config_path)
        assert config.puppetdb_url == "https://puppetdb.test:8081"
        assert config.output == "configmap"
        assert config.sleep == 30.0
        assert config.namespace == "default"  # default

    def test_load_empty_file_returns_defaults(self, tmp_path):
        """Test loading empty file returns defaults."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("")

        config = load_config(config_path)
        assert config.output == "stdout"

    def test_load_invalid_yaml_raises_error(self, tmp_path):
        """Test loading invalid YAML raises ConfigError."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("invalid: yaml: content: [")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(config_path)

    def test_load_invalid_values_raises_error(self, tmp_path):
        """Test loading invalid values raises ConfigError."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.dump({"puppetdb_url": "ftp://puppetdb"}))

        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(config_path)

    def test_load_null_sleep_raises_error(self, tmp_path):
        """Test an empty sleep key is a configuration error."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("sleep:\n")

        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(config_path)

    def test_load_non_mapping_raises_error(self, tmp_path):
        """Test a YAML list is rejected."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError):
            load_config(config_path)


class TestApplyOverrides:
    """Tests for apply_overrides function."""

    def test_none_values_ignored(self):
        """Test None overrides keep existing values."""
        config = apply_overrides(Config(output="file"), {"output": None, "query": None})
        assert config.output == "file"
        assert config.query == DEFAULT_QUERY

    def test_values_applied(self):
        """Test overrides replace values and are validated."""
        config = apply_overrides(Config(), {
            "output": "configmap",
            "namespace": "monitoring",
            "sleep": "2m",
            "log_level": "debug",
        })
        assert config.output == "configmap"
        assert config.namespace == "monitoring"
        assert config.sleep == 120.0
        assert config.logging.level == "DEBUG"

    def test_invalid_override_raises_error(self):
        """Test invalid override raises ConfigError."""
        with pytest.raises(ConfigError):
            apply_overrides(Config(), {"puppetdb_url": "ftp://puppetdb"})

    def test_unknown_key_raises_error(self):
        """Test unknown override key raises ConfigError."""
        with pytest.raises(ConfigError, match="Unknown configuration key"):
            apply_overrides(Config(), {"bogus": "value"})
