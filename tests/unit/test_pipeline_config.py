"""
Tests for environment loading and the aggregated pipeline configuration.
"""

import pytest

from herald.barrier.redis import redis_url_from_env
from herald.core.config import PipelineConfig
from herald.core.env import EnvManager
from herald.core.exceptions import ConfigurationError
from herald.dispatch.retry import BackoffStrategy


class TestEnvManager:
    """Tests for EnvManager"""

    def test_load_env_file(self, tmp_path, monkeypatch):
        """Loading a .env file exposes its variables."""
        monkeypatch.setenv("HERALD_TEST_VAR", "placeholder")
        (tmp_path / ".env").write_text("HERALD_TEST_VAR=from-file\n")

        env = EnvManager(project_root=tmp_path, auto_load=False)
        assert env.load(override=True) is True

        assert env.get("HERALD_TEST_VAR") == "from-file"

    def test_missing_env_file(self, tmp_path):
        env = EnvManager(project_root=tmp_path, auto_load=False)
        assert env.load() is False

    def test_existing_variable_wins_over_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HERALD_TEST_VAR", "from-shell")
        (tmp_path / ".env").write_text("HERALD_TEST_VAR=from-file\n")

        env = EnvManager(project_root=tmp_path)

        assert env.get("HERALD_TEST_VAR") == "from-shell"

    def test_empty_value_counts_as_unset(self, monkeypatch):
        monkeypatch.setenv("HERALD_EMPTY", "")
        env = EnvManager(auto_load=False)
        assert env.get("HERALD_EMPTY", "default") == "default"

    def test_fallback_names(self, monkeypatch):
        monkeypatch.setenv("KAFKA_BROKERS", "kafka:9092")
        env = EnvManager(auto_load=False)
        assert env.get("KAFKA_BOOTSTRAP_SERVERS", fallbacks=("KAFKA_BROKERS",)) == "kafka:9092"

    @pytest.mark.parametrize(
        "value, expected",
        [("yes", True), ("0", False), ("OFF", False), ("maybe", True), (None, True)],
    )
    def test_get_bool(self, monkeypatch, value, expected):
        if value is not None:
            monkeypatch.setenv("HERALD_BOOL", value)
        else:
            monkeypatch.delenv("HERALD_BOOL", raising=False)
        env = EnvManager(auto_load=False)
        assert env.get_bool("HERALD_BOOL", True) is expected


class TestRedisUrl:
    def test_redis_url_wins(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("REDIS_ADDR", "ignored:1")
        assert redis_url_from_env() == "redis://cache:6379/2"

    def test_built_from_parts(self, monkeypatch):
        """Passwords are URL-quoted."""
        monkeypatch.setenv("REDIS_ADDR", "cache:6380")
        monkeypatch.setenv("REDIS_PASSWORD", "p@ss/word")
        monkeypatch.setenv("REDIS_DB", "3")
        assert redis_url_from_env() == "redis://:p%40ss%2Fword@cache:6380/3"

    def test_default(self):
        assert redis_url_from_env() == "redis://localhost:6379/0"


class TestPipelineConfig:
    """Tests for PipelineConfig.from_env and validate."""

    def test_defaults(self):
        config = PipelineConfig.from_env(EnvManager(auto_load=False))

        assert config.kafka.bootstrap_servers == "localhost:9092"
        assert config.consumer.topic == "email-events"
        assert config.consumer.dead_letter_topic == "email-events-dlq"
        assert config.consumer.consumer_group == "email-service-group"
        assert config.barrier.key_prefix == "email:sent:"
        assert config.barrier.ttl_seconds == 86400
        assert config.retry.max_attempts == 3
        assert config.retry.backoff is BackoffStrategy.LINEAR
        assert config.transport.mode == "log"
        assert config.broker_type == "kafka"
        assert config.service_port == 8085
        config.validate()

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("KAFKA_BROKERS", "k1:9092,k2:9092")
        monkeypatch.setenv("KAFKA_TOPIC_EMAIL_EVENTS", "notifications")
        monkeypatch.setenv("KAFKA_TOPIC_EMAIL_DLQ", "notifications-dlq")
        monkeypatch.setenv("KAFKA_CONSUMER_GROUP", "notifier")
        monkeypatch.setenv("IDEMPOTENCY_TTL_SECONDS", "3600")
        monkeypatch.setenv("MAX_RETRIES", "5")
        monkeypatch.setenv("RETRY_BACKOFF", "exponential")
        monkeypatch.setenv("EMAIL_SERVICE_PORT", "9000")

        config = PipelineConfig.from_env(EnvManager(auto_load=False))

        assert config.kafka.bootstrap_servers == "k1:9092,k2:9092"
        assert config.consumer.topic == "notifications"
        assert config.kafka_consumer.group_id == "notifier"
        assert config.barrier.ttl_hours == 1
        assert config.retry.max_attempts == 5
        assert config.retry.backoff is BackoffStrategy.EXPONENTIAL
        assert config.service_port == 9000

    def test_unparseable_number(self, monkeypatch):
        monkeypatch.setenv("MAX_RETRIES", "three")
        with pytest.raises(ConfigurationError, match="Invalid configuration value"):
            PipelineConfig.from_env(EnvManager(auto_load=False))

    def test_unknown_backoff(self, monkeypatch):
        monkeypatch.setenv("RETRY_BACKOFF", "fibonacci")
        with pytest.raises(ConfigurationError, match="fibonacci"):
            PipelineConfig.from_env(EnvManager(auto_load=False))

    def test_same_topic_for_dead_letters_rejected(self):
        config = PipelineConfig()
        config.consumer.dead_letter_topic = config.consumer.topic
        with pytest.raises(ConfigurationError, match="must differ"):
            config.validate()

    def test_zero_attempts_rejected(self):
        config = PipelineConfig()
        config.retry.max_attempts = 0
        with pytest.raises(ConfigurationError, match="max_attempts"):
            config.validate()

    def test_non_positive_ttl_rejected(self):
        config = PipelineConfig()
        config.barrier.ttl_seconds = 0
        with pytest.raises(ConfigurationError, match="IDEMPOTENCY_TTL_SECONDS"):
            config.validate()

    def test_smtp_mode_needs_host(self, monkeypatch):
        monkeypatch.setenv("EMAIL_MODE", "smtp")
        config = PipelineConfig.from_env(EnvManager(auto_load=False))
        with pytest.raises(ConfigurationError, match="SMTP_HOST"):
            config.validate()

    def test_unknown_email_mode(self, monkeypatch):
        monkeypatch.setenv("EMAIL_MODE", "carrier-pigeon")
        config = PipelineConfig.from_env(EnvManager(auto_load=False))
        with pytest.raises(ConfigurationError, match="EMAIL_MODE"):
            config.validate()

    def test_broker_type_from_env(self, monkeypatch):
        monkeypatch.setenv("BROKER_TYPE", "Memory")
        config = PipelineConfig.from_env(EnvManager(auto_load=False))
        assert config.broker_type == "memory"
        config.validate()

    def test_unknown_broker_type(self, monkeypatch):
        monkeypatch.setenv("BROKER_TYPE", "rabbitmq")
        config = PipelineConfig.from_env(EnvManager(auto_load=False))
        with pytest.raises(ConfigurationError, match="BROKER_TYPE"):
            config.validate()
