"""Tests for configuration management."""

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from message_pipeline.shared.config.settings import PipelineConfig, load_config


def _write_yaml(data) -> str:
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(data, f)
        return f.name


@pytest.mark.unit
class TestConfigLoading:
    """Test configuration loading from files and environment."""

    def test_defaults_when_file_missing(self):
        config = load_config('nonexistent.yaml')

        assert config.redis.url == "redis://localhost:6379/0"
        assert config.redis.queue_name == "messages"
        assert config.worker.idle_delay_seconds == 1.0
        assert config.worker.backoff_delay_seconds == 5.0
        assert config.worker.content_policy == "reject"
        assert config.worker.requeue_on_failure is False
        assert config.startup.max_attempts == 1

    def test_load_from_yaml_file(self):
        config_file = _write_yaml({
            'redis': {'url': 'redis://cache:6379/1', 'queue_name': 'inbox'},
            'worker': {'idle_delay_seconds': 0.5, 'content_policy': 'truncate'},
        })

        config = load_config(config_file)

        assert config.redis.url == 'redis://cache:6379/1'
        assert config.redis.queue_name == 'inbox'
        assert config.worker.idle_delay_seconds == 0.5
        assert config.worker.content_policy == 'truncate'
        # Untouched sections keep defaults
        assert config.database.pool_max_size == 5

    @patch.dict('os.environ', {
        'DATABASE_DSN': 'postgresql://app:secret@db:5432/prod',
        'REQUEUE_ON_FAILURE': 'true',
    })
    def test_environment_variable_substitution(self):
        config_file = _write_yaml({
            'database': {'dsn': '${DATABASE_DSN:postgresql://localhost/dev}'},
            'worker': {'requeue_on_failure': '${REQUEUE_ON_FAILURE:false}'},
            'health': {'port': '${HEALTH_PORT:9090}'},
        })

        config = load_config(config_file)

        assert config.database.dsn == 'postgresql://app:secret@db:5432/prod'
        assert config.worker.requeue_on_failure is True
        assert config.health.port == 9090

    def test_bundled_local_config(self):
        config = load_config(str(Path(__file__).resolve().parents[2] / 'config' / 'local.yaml'))

        assert config.redis.queue_name == 'messages'
        assert config.startup.max_attempts == 5

    def test_invalid_content_policy(self):
        config_file = _write_yaml({'worker': {'content_policy': 'ignore'}})

        with pytest.raises(ValueError, match="content_policy"):
            load_config(config_file)

    def test_non_positive_delay(self):
        config = PipelineConfig()
        config.worker.backoff_delay_seconds = 0

        with pytest.raises(ValueError, match="backoff_delay_seconds"):
            config.validate()

    @patch.dict('os.environ', {'QUEUE_NAME': 'inf', 'LOG_LEVEL': '10'})
    def test_string_fields_are_not_coerced(self):
        config_file = _write_yaml({
            'redis': {'queue_name': '${QUEUE_NAME:messages}'},
            'logging': {'level': '${LOG_LEVEL:INFO}'},
            'worker': {'backoff_delay_seconds': '${BACKOFF:2.5}'},
        })

        config = load_config(config_file)

        assert config.redis.queue_name == 'inf'
        assert config.logging.level == '10'
        assert config.worker.backoff_delay_seconds == 2.5

    @patch.dict('os.environ', {'REQUEUE_ON_FAILURE': 'maybe'})
    def test_invalid_boolean_rejected(self):
        config_file = _write_yaml({'worker': {'requeue_on_failure': '${REQUEUE_ON_FAILURE:false}'}})

        with pytest.raises(ValueError, match="true or false"):
            load_config(config_file)
