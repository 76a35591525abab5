"""Tests for configuration loading."""

import pytest

from relayflow.config import load_config
from relayflow.transports import InMemoryTransport, Route, get_transport
from relayflow.transports.rabbitmq import RabbitMQTransport


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for name in (
        "RELAYFLOW_CONFIG",
        "RELAYFLOW_DATABASE_URL",
        "DATABASE_URL",
        "RELAYFLOW_TRANSPORT",
        "RELAYFLOW_RABBITMQ_URL",
        "RELAYFLOW_DEFINITIONS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults_without_config_file():
    config = load_config()
    assert config.transport.backend == "inmemory"
    assert config.retry.max_retries == 3
    assert config.retry.delay_ms == 5000
    assert config.execution.action_timeout == 30.0
    assert config.execution.step_lease == 60.0
    assert config.completion.backend == "log"
    assert config.topology.execution.queue == "workflow_execution_queue"
    assert config.topology.dead_letter.exchange == "workflow_execution_dlx_exchange"
    assert config.database_url is None


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "relayflow.yaml"
    config_path.write_text(
        """
transport:
  backend: rabbitmq
  rabbitmq:
    url: amqp://user:pw@testhost/
    prefetch_count: 4
retry:
  max_retries: 5
  delay_ms: 250
handlers:
  slack_alert: my_handlers:SlackAlert
definitions_path: ./workflows
"""
    )
    monkeypatch.setenv("RELAYFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.transport.backend == "rabbitmq"
    assert config.transport.rabbitmq.url == "amqp://user:pw@testhost/"
    assert config.transport.rabbitmq.prefetch_count == 4
    assert config.retry.max_retries == 5
    assert config.retry.delay_ms == 250
    assert config.handlers == {"slack_alert": "my_handlers:SlackAlert"}
    assert config.definitions_path == "./workflows"


def test_env_overrides_take_precedence(tmp_path, monkeypatch):
    (tmp_path / "config.yaml").write_text("database_url: sqlite://from-file.db\n")
    monkeypatch.setenv("DATABASE_URL", "sqlite://from-env.db")
    monkeypatch.setenv("RELAYFLOW_RABBITMQ_URL", "amqp://env-host/")
    monkeypatch.setenv("RELAYFLOW_DEFINITIONS", "/srv/workflows")

    config = load_config()
    assert config.database_url == "sqlite://from-env.db"
    assert config.transport.rabbitmq.url == "amqp://env-host/"
    assert config.definitions_path == "/srv/workflows"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: rabbitmq
  rabbitmq:
    url: amqp://confighost/
retry:
  delay_ms: 1000
"""
    )
    monkeypatch.setenv("RELAYFLOW_CONFIG", str(config_path))

    transport = get_transport()
    assert isinstance(transport, RabbitMQTransport)
    assert transport.url == "amqp://confighost/"
    assert transport.retry.delay_ms == 1000


def test_transport_env_override(monkeypatch):
    monkeypatch.setenv("RELAYFLOW_TRANSPORT", "inmemory")
    assert isinstance(get_transport(), InMemoryTransport)


def test_unknown_transport_backend():
    with pytest.raises(ValueError, match=r"kafka \(expected one of inmemory, rabbitmq\)"):
        get_transport("kafka")


def test_topology_binding_lookup():
    config = load_config()
    assert config.topology.binding(Route.FAILED.value).queue == "workflow_execution_failed_queue"
    with pytest.raises(ValueError):
        config.topology.binding("nope")
