"""
Tests for envkit/kafka.py

No broker is needed: settings are loaded from an in-memory env store, and the
produce/consume helpers are driven with fake producer/consumer objects that
mimic the confluent-kafka call shapes.
"""
import json
import threading
from datetime import timedelta

import pytest
from pydantic import BaseModel, Field, ValidationError

from envkit import ConfigurationError, MemoryEnvStore
from envkit.kafka import (
    KafkaSettings,
    consume_json,
    consumer_config,
    load_kafka_settings,
    producer_config,
    send_json,
    topic_name,
    topic_names,
)


class PurchaseCreated(BaseModel):
    eventId: str
    userId: str
    quantity: int = Field(ge=1)


class FakeProducer:
    def __init__(self, remaining=0):
        self.produced = []
        self.flushed_with = None
        self.remaining = remaining

    def produce(self, **kwargs):
        self.produced.append(kwargs)

    def flush(self, timeout):
        self.flushed_with = timeout
        return self.remaining


class FakeMessage:
    def __init__(self, value=b"", error=None, offset=0):
        self._value = value
        self._error = error
        self._offset = offset

    def value(self):
        return self._value

    def error(self):
        return self._error

    def partition(self):
        return 0

    def offset(self):
        return self._offset

    def topic(self):
        return "purchases"


class FakeConsumer:
    """Hands out queued messages, then sets the stop event."""

    def __init__(self, messages, stop_event):
        self.messages = list(messages)
        self.stop_event = stop_event
        self.committed = []
        self.closed = False

    def poll(self, timeout):
        if not self.messages:
            self.stop_event.set()
            return None
        return self.messages.pop(0)

    def commit(self, msg):
        self.committed.append(msg)

    def close(self):
        self.closed = True


# --- Settings ----------------------------------------------------------------


def test_defaults_are_valid():
    settings = KafkaSettings()
    assert settings.brokers == ["localhost:9092"]
    assert settings.acks == -1
    assert settings.auto_offset_reset == "latest"


def test_load_kafka_settings_from_env():
    store = MemoryEnvStore(
        {
            "KAFKA_BROKERS": "k1:9092, k2:9092",
            "KAFKA_CLIENT_ID": "orders-api",
            "KAFKA_WORKSPACE": "staging",
            "KAFKA_GROUP_ID": "orders",
            "KAFKA_TOPICS": "orders,payments",
            "KAFKA_AUTO_OFFSET_RESET": "EARLIEST",
            "KAFKA_SESSION_TIMEOUT": "15s",
            "KAFKA_RETRY_BACKOFF_MS": "250",
            "KAFKA_COMPRESSION": "LZ4",
        }
    )
    settings = load_kafka_settings(store=store)

    assert settings.brokers == ["k1:9092", "k2:9092"]
    assert settings.client_id == "orders-api"
    assert settings.topics == ["orders", "payments"]
    assert settings.auto_offset_reset == "earliest"
    assert settings.session_timeout == timedelta(seconds=15)
    assert settings.retry_backoff == timedelta(milliseconds=250)
    assert settings.compression == "lz4"


def test_acks_accepts_all_and_numbers():
    assert KafkaSettings(acks="all").acks == -1
    assert KafkaSettings(acks="1", idempotent_writes=False).acks == 1


def test_idempotence_requires_acks_all():
    store = MemoryEnvStore({"KAFKA_ACKS": "1"})
    with pytest.raises(ConfigurationError):
        load_kafka_settings(store=store)

    store.set("KAFKA_IDEMPOTENT_WRITES", "false")
    assert load_kafka_settings(store=store).acks == 1


@pytest.mark.parametrize(
    "overrides",
    [
        {"compression": "brotli"},
        {"partitioner": "sticky"},
        {"brokers": []},
        {"client_id": ""},
        {"timeout": timedelta(0)},
        {"topics": ["t"], "group_id": ""},
        {"max_message_bytes": 0},
        {"retry_max": -1},
    ],
)
def test_invalid_settings_are_rejected(overrides):
    with pytest.raises(ValidationError):
        KafkaSettings(**overrides)


def test_unknown_sasl_mechanism_is_a_configuration_error():
    store = MemoryEnvStore({"KAFKA_SASL_MECHANISM": "GSSAPI"})
    with pytest.raises(ConfigurationError):
        load_kafka_settings(store=store)


# --- Topics ------------------------------------------------------------------


def test_workspace_prefix():
    assert topic_name(KafkaSettings(), "orders") == "orders"
    settings = KafkaSettings(workspace="production")
    assert topic_name(settings, "orders") == "production.orders"
    assert topic_names(settings, ["a", "b"]) == ["production.a", "production.b"]


# --- confluent-kafka config --------------------------------------------------


def test_producer_config():
    settings = KafkaSettings(brokers=["k1:9092", "k2:9092"], retry_backoff=timedelta(milliseconds=200))
    conf = producer_config(settings)

    assert conf["bootstrap.servers"] == "k1:9092,k2:9092"
    assert conf["acks"] == -1
    assert conf["enable.idempotence"] is True
    assert conf["compression.type"] == "snappy"
    assert conf["retry.backoff.ms"] == 200
    assert conf["partitioner"] == "murmur2_random"
    assert "group.id" not in conf
    assert "security.protocol" not in conf


def test_consumer_config():
    settings = KafkaSettings(group_id="g1", session_timeout=timedelta(seconds=12))
    conf = consumer_config(settings)

    assert conf["group.id"] == "g1"
    assert conf["enable.auto.commit"] is False
    assert conf["auto.offset.reset"] == "latest"
    assert conf["session.timeout.ms"] == 12000
    assert conf["max.poll.interval.ms"] == 300000
    assert "acks" not in conf


def test_security_config():
    store = MemoryEnvStore(
        {
            "KAFKA_SASL_MECHANISM": "scram-sha-512",
            "KAFKA_SASL_USERNAME": "svc",
            "KAFKA_SASL_PASSWORD": "pw",
            "KAFKA_TLS_ENABLED": "true",
            "KAFKA_TLS_SKIP_VERIFY": "yes",
            "KAFKA_DEBUG": "1",
        }
    )
    conf = producer_config(load_kafka_settings(store=store))

    assert conf["security.protocol"] == "SASL_SSL"
    assert conf["sasl.mechanism"] == "SCRAM-SHA-512"
    assert conf["sasl.username"] == "svc"
    assert conf["enable.ssl.certificate.verification"] is False
    assert "debug" in conf


def test_tls_without_sasl():
    settings = KafkaSettings(security={"tls_enabled": True})
    assert consumer_config(settings)["security.protocol"] == "SSL"


# --- Produce -----------------------------------------------------------------


def test_send_json_with_model():
    producer = FakeProducer()
    event = PurchaseCreated(eventId="e1", userId="u1", quantity=2)

    remaining = send_json(producer, "purchases", event, key="u1")

    assert remaining == 0
    sent = producer.produced[0]
    assert sent["topic"] == "purchases"
    assert sent["key"] == b"u1"
    assert json.loads(sent["value"]) == {"eventId": "e1", "userId": "u1", "quantity": 2}
    assert producer.flushed_with == 5.0


def test_send_json_without_flush():
    producer = FakeProducer()
    send_json(producer, "purchases", {"a": 1}, flush_timeout=None)
    assert producer.produced[0]["key"] is None
    assert producer.flushed_with is None


def test_send_json_reports_undelivered(caplog):
    producer = FakeProducer(remaining=1)
    assert send_json(producer, "purchases", {"a": 1}) == 1
    assert "still queued" in caplog.text


# --- Consume -----------------------------------------------------------------


def test_consume_json_commits_after_handling():
    stop = threading.Event()
    good = FakeMessage(b'{"eventId": "e1", "userId": "u1", "quantity": 1}', offset=1)
    consumer = FakeConsumer([good], stop)
    seen = []

    def handler(event, msg):
        seen.append(event)
        return True

    consume_json(consumer, handler, stop, model=PurchaseCreated)

    assert seen == [PurchaseCreated(eventId="e1", userId="u1", quantity=1)]
    assert consumer.committed == [good]
    assert consumer.closed


def test_consume_json_skips_poison_messages():
    stop = threading.Event()
    bad_json = FakeMessage(b"{oops", offset=1)
    bad_bytes = FakeMessage(b"\xff\xfe", offset=2)
    bad_schema = FakeMessage(b'{"eventId": "e2", "userId": "u", "quantity": 0}', offset=3)
    consumer = FakeConsumer([bad_json, bad_bytes, bad_schema], stop)
    seen = []

    consume_json(consumer, lambda e, m: seen.append(e) or True, stop, model=PurchaseCreated)

    assert seen == []
    assert consumer.committed == [bad_json, bad_bytes, bad_schema]


def test_consume_json_does_not_commit_failed_handling_or_errors():
    stop = threading.Event()
    errored = FakeMessage(error="broker down")
    unhandled = FakeMessage(b'{"n": 1}')
    consumer = FakeConsumer([None, errored, unhandled], stop)

    consume_json(consumer, lambda e, m: False, stop)

    assert consumer.committed == []
    assert consumer.closed
