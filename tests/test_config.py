"""Tests for prdsmith.config."""

import pytest
import yaml

from prdsmith.config import AppConfig, ConfigError, RetryConfig, config_path, load_config, parse_config
from prdsmith.interview.state import ProviderName


class TestLoadConfig:
    def test_default_file_created(self, tmp_path):
        config = load_config(tmp_path)

        assert config == AppConfig()
        path = config_path(tmp_path)
        assert path.is_file()
        assert yaml.safe_load(path.read_text())["defaultProvider"] == "claude"

    def test_no_create(self, tmp_path):
        load_config(tmp_path, create=False)
        assert not config_path(tmp_path).exists()

    def test_written_defaults_load_back(self, tmp_path):
        load_config(tmp_path)
        assert load_config(tmp_path) == AppConfig()

    def test_custom_values(self, tmp_path):
        path = config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text(
            "defaultProvider: codex\n"
            "outputDirectory: docs/prd\n"
            "responseTimeout: 60\n"
            "retry:\n"
            "  maxAttempts: 5\n"
        )
        config = load_config(tmp_path)

        assert config.default_provider is ProviderName.CODEX
        assert config.output_directory == "docs/prd"
        assert config.response_timeout == 60.0
        assert config.retry.max_attempts == 5
        assert config.retry.backoff_ms == 1000
        assert config.retry.to_policy().max_attempts == 5

    def test_invalid_yaml(self, tmp_path):
        path = config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("defaultProvider: [claude\n")

        with pytest.raises(ConfigError, match="invalid YAML"):
            load_config(tmp_path)

    def test_empty_file_uses_defaults(self, tmp_path):
        path = config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("")
        assert load_config(tmp_path) == AppConfig()


class TestParseConfig:
    @pytest.mark.parametrize(
        "data",
        [
            {"defaultProvider": "gpt"},
            {"outputDirectory": ""},
            {"responseTimeout": 0},
            {"responseTimeout": "fast"},
            {"retry": {"maxAttempts": 0}},
            {"retry": {"backoffMs": -1}},
            {"retry": {"jitterMs": True}},
            {"retry": "often"},
            ["not", "a", "mapping"],
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(ConfigError):
            parse_config(data)

    def test_document_round_trip(self):
        config = AppConfig(default_provider=ProviderName.OPENCODE, response_timeout=42.5)
        assert parse_config(config.to_document()) == config

    @pytest.mark.parametrize(
        "data,field",
        [
            ({"retry": {"maxAttempts": 0}}, "retry.maxAttempts"),
            ({"retry": {"jitterMs": "lots"}}, "retry.jitterMs"),
            ({"defaultProvider": "gpt"}, "defaultProvider"),
            ({"responseTimeout": True}, "responseTimeout"),
            ({"outputDir": "docs"}, "outputDir"),
        ],
    )
    def test_error_names_the_setting(self, data, field):
        with pytest.raises(ConfigError) as exc_info:
            parse_config(data)
        assert str(exc_info.value).startswith(f"{field}:")

    def test_null_retry_uses_defaults(self):
        assert parse_config({"retry": None}).retry == RetryConfig()

    def test_document_is_camel_case(self):
        assert set(AppConfig().to_document()["retry"]) == {"maxAttempts", "backoffMs", "maxBackoffMs", "jitterMs"}
