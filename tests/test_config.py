"""Tests for ClientConfig loading and validation."""

import pytest

from irmin_client.config import DEFAULT_QUEUE_SIZE, DEFAULT_TASK_OWNER, ClientConfig
from irmin_client.exceptions import ConfigurationError

ENV_VARS = [
    "IRMIN_URL",
    "IRMIN_TASK_OWNER",
    "IRMIN_TREE",
    "IRMIN_QUEUE_SIZE",
    "IRMIN_CONNECT_TIMEOUT",
    "IRMIN_LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestFromEnv:
    def test_minimal(self, clean_env):
        clean_env.setenv("IRMIN_URL", "http://127.0.0.1:8080")
        config = ClientConfig.from_env()
        assert config.base_url == "http://127.0.0.1:8080"
        assert config.task_owner == DEFAULT_TASK_OWNER
        assert config.tree == ""
        assert config.queue_size == DEFAULT_QUEUE_SIZE

    def test_all_settings(self, clean_env):
        clean_env.setenv("IRMIN_URL", "https://irmin.example.com")
        clean_env.setenv("IRMIN_TASK_OWNER", "alice")
        clean_env.setenv("IRMIN_TREE", "dev")
        clean_env.setenv("IRMIN_QUEUE_SIZE", "8")
        clean_env.setenv("IRMIN_CONNECT_TIMEOUT", "2.5")
        clean_env.setenv("IRMIN_LOG_LEVEL", "debug")

        config = ClientConfig.from_env()

        assert config == ClientConfig("https://irmin.example.com", "alice", "dev", 8, 2.5, "debug")

    def test_missing_url(self, clean_env):
        with pytest.raises(ConfigurationError) as exc:
            ClientConfig.from_env()
        assert exc.value.field == "IRMIN_URL"

    def test_bad_number(self, clean_env):
        clean_env.setenv("IRMIN_URL", "http://irmin.test")
        clean_env.setenv("IRMIN_QUEUE_SIZE", "lots")
        with pytest.raises(ConfigurationError):
            ClientConfig.from_env()


class TestFromFile:
    def test_irmin_section(self, tmp_path):
        config_file = tmp_path / "irmin.yaml"
        config_file.write_text(
            "irmin:\n"
            "  url: http://127.0.0.1:8080\n"
            "  task_owner: bob\n"
            "  tree: master\n"
            "  queue_size: 16\n"
            "  log_level: WARNING\n"
        )

        config = ClientConfig.from_file(config_file)

        assert config.base_url == "http://127.0.0.1:8080"
        assert config.task_owner == "bob"
        assert config.tree == "master"
        assert config.queue_size == 16
        assert config.log_level == "WARNING"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ClientConfig.from_file(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "irmin.yaml"
        config_file.write_text("irmin: [unclosed\n")
        with pytest.raises(ConfigurationError):
            ClientConfig.from_file(config_file)

    def test_missing_url(self, tmp_path):
        config_file = tmp_path / "irmin.yaml"
        config_file.write_text("irmin:\n  tree: master\n")
        with pytest.raises(ConfigurationError) as exc:
            ClientConfig.from_file(config_file)
        assert exc.value.field == "irmin.url"

    def test_section_not_mapping(self, tmp_path):
        config_file = tmp_path / "irmin.yaml"
        config_file.write_text("irmin: http://127.0.0.1\n")
        with pytest.raises(ConfigurationError):
            ClientConfig.from_file(str(config_file))


class TestValidate:
    @pytest.mark.parametrize("url", ["", "127.0.0.1:8080", "ftp://irmin.test", "http://"])
    def test_bad_url(self, url):
        with pytest.raises(ConfigurationError) as exc:
            ClientConfig(url).validate()
        assert exc.value.field == "base_url"

    def test_bad_queue_size(self):
        with pytest.raises(ConfigurationError):
            ClientConfig("http://irmin.test", queue_size=0).validate()

    def test_bad_timeout(self):
        with pytest.raises(ConfigurationError):
            ClientConfig("http://irmin.test", connect_timeout=0).validate()

    def test_bad_log_level(self):
        with pytest.raises(ConfigurationError) as exc:
            ClientConfig("http://irmin.test", log_level="LOUD").validate()
        assert exc.value.field == "log_level"

    def test_log_level_name_is_case_insensitive(self):
        ClientConfig("http://irmin.test", log_level="info").validate()

    def test_returns_self(self):
        config = ClientConfig("http://irmin.test")
        assert config.validate() is config
