"""Kafka settings and confluent-kafka helpers.

High-level flow:
    environment -> KafkaSettings -> confluent config dict -> Producer/Consumer

Important concepts used here:

1) Workspace prefix
- If `workspace` is set, every topic is namespaced as "{workspace}.{topic}".
- This lets several environments (dev/staging) or tenants share one cluster.

2) Manual offset commit
- `consume_json` commits only after the handler reports success, which gives
  at-least-once delivery. Handlers should therefore be idempotent.
- Malformed messages (bad JSON, wrong schema) are logged and committed,
  otherwise the consumer would re-read the same poison message forever.

Environment variables read by `load_kafka_settings()` (default prefix KAFKA_):

    BROKERS, CLIENT_ID, WORKSPACE, GROUP_ID, TOPICS, AUTO_OFFSET_RESET,
    ENABLE_AUTO_COMMIT, AUTO_COMMIT_INTERVAL, SESSION_TIMEOUT,
    MAX_PROCESSING_TIME, ACKS, COMPRESSION, MAX_MESSAGE_BYTES,
    IDEMPOTENT_WRITES, RETRY_MAX, RETRY_BACKOFF_MS, TIMEOUT, PARTITIONER,
    SASL_MECHANISM, SASL_USERNAME, SASL_PASSWORD, TLS_ENABLED,
    TLS_SKIP_VERIFY, DEBUG
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Callable, Iterable, Literal

from confluent_kafka import Consumer, Producer
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .config import DEFAULT_KAFKA_PREFIX
from .errors import ConfigurationError
from .resolver import Resolver
from .store import EnvStore

log = logging.getLogger(__name__)

# Friendly partitioner names -> librdkafka names.
# "hash" matches the Java client's murmur2 partitioning.
PARTITIONERS: dict[str, str] = {
    "hash": "murmur2_random",
    "random": "random",
    "consistent": "consistent_random",
    "murmur2": "murmur2",
    "murmur2_random": "murmur2_random",
    "fnv1a": "fnv1a",
    "fnv1a_random": "fnv1a_random",
}

COMPRESSION_CODECS = frozenset({"none", "gzip", "snappy", "lz4", "zstd"})

SASL_MECHANISMS = frozenset({"PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512"})


class SecuritySettings(BaseModel):
    """SASL/TLS settings. SASL is enabled when `sasl_mechanism` is set."""

    sasl_mechanism: str = ""
    sasl_username: str = ""
    sasl_password: str = ""
    tls_enabled: bool = False
    tls_skip_verify: bool = False

    @field_validator("sasl_mechanism")
    @classmethod
    def _check_mechanism(cls, value: str) -> str:
        value = value.upper()
        if value and value not in SASL_MECHANISMS:
            raise ValueError(f"unsupported SASL mechanism: {value}")
        return value

    @property
    def enabled(self) -> bool:
        return bool(self.sasl_mechanism) or self.tls_enabled


class KafkaSettings(BaseModel):
    """Validated Kafka client settings.

    Notes:
        - `acks` is -1 (all in-sync replicas), 0 or 1. "all" is accepted as -1.
        - Idempotent writes require acks=-1.
        - A consumer group id is required as soon as topics are configured.
    """

    brokers: list[str] = Field(default_factory=lambda: ["localhost:9092"], min_length=1)
    client_id: str = Field(default="envkit", min_length=1)
    workspace: str = ""
    timeout: timedelta = timedelta(seconds=30)
    debug: bool = False

    # Consumer
    group_id: str = "default-consumer-group"
    topics: list[str] = Field(default_factory=list)
    auto_offset_reset: Literal["earliest", "latest"] = "latest"
    enable_auto_commit: bool = False
    auto_commit_interval: timedelta = timedelta(seconds=1)
    session_timeout: timedelta = timedelta(seconds=10)
    max_processing_time: timedelta = timedelta(minutes=5)

    # Producer
    acks: Literal[-1, 0, 1] = -1
    compression: str = "snappy"
    max_message_bytes: int = Field(default=1_000_000, gt=0)
    idempotent_writes: bool = True
    retry_max: int = Field(default=3, ge=0)
    retry_backoff: timedelta = timedelta(milliseconds=100)
    partitioner: str = "hash"

    security: SecuritySettings = Field(default_factory=SecuritySettings)

    @field_validator("acks", mode="before")
    @classmethod
    def _parse_acks(cls, value: Any) -> Any:
        if isinstance(value, str):
            return -1 if value.strip().lower() == "all" else int(value)
        return value

    @field_validator("compression")
    @classmethod
    def _check_compression(cls, value: str) -> str:
        value = value.lower()
        if value not in COMPRESSION_CODECS:
            raise ValueError(f"unsupported compression codec: {value}")
        return value

    @field_validator("partitioner")
    @classmethod
    def _check_partitioner(cls, value: str) -> str:
        value = value.lower()
        if value not in PARTITIONERS:
            raise ValueError(f"unsupported partitioner: {value}")
        return value

    @model_validator(mode="after")
    def _check_consistency(self) -> KafkaSettings:
        if self.timeout <= timedelta(0):
            raise ValueError("timeout must be positive")
        if self.topics:
            if not self.group_id:
                raise ValueError("consumer group id cannot be empty when topics are specified")
            if self.session_timeout <= timedelta(0):
                raise ValueError("consumer session timeout must be positive")
        if self.idempotent_writes and self.acks != -1:
            raise ValueError("idempotent writes require acks=-1 (all)")
        return self


def load_kafka_settings(prefix: str = DEFAULT_KAFKA_PREFIX, store: EnvStore | None = None) -> KafkaSettings:
    """Read `KafkaSettings` from prefixed environment variables.

    Raises:
        ConfigurationError: the resulting settings are invalid.
    """
    env = Resolver(prefix=prefix, silent=True, store=store)
    d = KafkaSettings()

    try:
        return KafkaSettings(
            brokers=env.get_string_list("BROKERS", d.brokers),
            client_id=env.get_string("CLIENT_ID", d.client_id),
            workspace=env.get_string("WORKSPACE", d.workspace),
            timeout=env.get_duration("TIMEOUT", d.timeout),
            debug=env.get_bool("DEBUG", d.debug),
            group_id=env.get_string("GROUP_ID", d.group_id),
            topics=env.get_string_list("TOPICS", d.topics),
            auto_offset_reset=env.get_string("AUTO_OFFSET_RESET", d.auto_offset_reset).lower(),
            enable_auto_commit=env.get_bool("ENABLE_AUTO_COMMIT", d.enable_auto_commit),
            auto_commit_interval=env.get_duration("AUTO_COMMIT_INTERVAL", d.auto_commit_interval),
            session_timeout=env.get_duration("SESSION_TIMEOUT", d.session_timeout),
            max_processing_time=env.get_duration("MAX_PROCESSING_TIME", d.max_processing_time),
            acks=env.get_string("ACKS", "all"),
            compression=env.get_string("COMPRESSION", d.compression),
            max_message_bytes=env.get_int("MAX_MESSAGE_BYTES", d.max_message_bytes),
            idempotent_writes=env.get_bool("IDEMPOTENT_WRITES", d.idempotent_writes),
            retry_max=env.get_int("RETRY_MAX", d.retry_max),
            retry_backoff=env.get_duration("RETRY_BACKOFF_MS", d.retry_backoff),
            partitioner=env.get_string("PARTITIONER", d.partitioner),
            security=SecuritySettings(
                sasl_mechanism=env.get_string("SASL_MECHANISM"),
                sasl_username=env.get_string("SASL_USERNAME"),
                sasl_password=env.get_string("SASL_PASSWORD"),
                tls_enabled=env.get_bool("TLS_ENABLED", False),
                tls_skip_verify=env.get_bool("TLS_SKIP_VERIFY", False),
            ),
        )
    except (ValidationError, ValueError) as e:
        raise ConfigurationError(f"invalid Kafka configuration from environment: {e}") from e


# --- Topics ------------------------------------------------------------------


def topic_name(settings: KafkaSettings, topic: str) -> str:
    """Apply the workspace prefix: ("prod", "orders") -> "prod.orders"."""
    if not settings.workspace:
        return topic
    return f"{settings.workspace}.{topic}"


def topic_names(settings: KafkaSettings, topics: Iterable[str]) -> list[str]:
    return [topic_name(settings, t) for t in topics]


# --- confluent-kafka configuration -------------------------------------------


def _ms(value: timedelta) -> int:
    return int(value.total_seconds() * 1000)


def _common_config(settings: KafkaSettings) -> dict[str, Any]:
    conf: dict[str, Any] = {
        "bootstrap.servers": ",".join(settings.brokers),
        "client.id": settings.client_id,
        "socket.timeout.ms": _ms(settings.timeout),
    }

    sec = settings.security
    if sec.sasl_mechanism:
        conf["security.protocol"] = "SASL_SSL" if sec.tls_enabled else "SASL_PLAINTEXT"
        conf["sasl.mechanism"] = sec.sasl_mechanism
        conf["sasl.username"] = sec.sasl_username
        conf["sasl.password"] = sec.sasl_password
    elif sec.tls_enabled:
        conf["security.protocol"] = "SSL"

    if sec.tls_enabled and sec.tls_skip_verify:
        # Insecure: accepts any broker certificate.
        conf["enable.ssl.certificate.verification"] = False

    if settings.debug:
        conf["debug"] = "generic,broker,topic,msg"

    return conf


def producer_config(settings: KafkaSettings) -> dict[str, Any]:
    """Configuration dict for `confluent_kafka.Producer`."""
    conf = _common_config(settings)
    conf.update(
        {
            "acks": settings.acks,
            "compression.type": settings.compression,
            "message.max.bytes": settings.max_message_bytes,
            "enable.idempotence": settings.idempotent_writes,
            "retries": settings.retry_max,
            "retry.backoff.ms": _ms(settings.retry_backoff),
            "request.timeout.ms": _ms(settings.timeout),
            "partitioner": PARTITIONERS[settings.partitioner],
        }
    )
    return conf


def consumer_config(settings: KafkaSettings) -> dict[str, Any]:
    """Configuration dict for `confluent_kafka.Consumer`.

    - auto.offset.reset: where a group with no committed offsets starts.
    - enable.auto.commit: off by default so offsets are committed only after
      processing (see `consume_json`).
    """
    conf = _common_config(settings)
    conf.update(
        {
            "group.id": settings.group_id,
            "auto.offset.reset": settings.auto_offset_reset,
            "enable.auto.commit": settings.enable_auto_commit,
            "auto.commit.interval.ms": _ms(settings.auto_commit_interval),
            "session.timeout.ms": _ms(settings.session_timeout),
            "max.poll.interval.ms": _ms(settings.max_processing_time),
        }
    )
    return conf


def create_producer(settings: KafkaSettings) -> Producer:
    return Producer(producer_config(settings))


def create_consumer(settings: KafkaSettings) -> Consumer:
    """Create a consumer, subscribed to `settings.topics` (workspace applied) if any."""
    consumer = Consumer(consumer_config(settings))
    if settings.topics:
        consumer.subscribe(topic_names(settings, settings.topics))
    return consumer


# --- Produce -----------------------------------------------------------------


def _delivery_report(err, msg) -> None:
    """Called by confluent-kafka when the broker acks the message or delivery fails."""
    if err is not None:
        log.error("Delivery failed: %s", err)
    else:
        log.debug("Delivered to %s [%s] @ offset %s", msg.topic(), msg.partition(), msg.offset())


def send_json(
    producer: Producer,
    topic: str,
    event: BaseModel | dict[str, Any],
    key: str | None = None,
    flush_timeout: float | None = 5.0,
) -> int:
    """Serialize `event` as JSON and produce it.

    Args:
        producer: A confluent-kafka producer.
        topic: Full topic name (use `topic_name()` to apply a workspace).
        event: A pydantic model or a JSON-serializable dict.
        key: Optional message key. Same key -> same partition -> ordering kept.
        flush_timeout: Seconds to wait for delivery. None skips the flush and
            lets the producer batch.

    Returns:
        Number of messages still queued after the flush (0 means delivered).
    """
    if isinstance(event, BaseModel):
        payload = event.model_dump_json().encode("utf-8")
    else:
        payload = json.dumps(event).encode("utf-8")

    producer.produce(
        topic=topic,
        key=key.encode("utf-8") if key is not None else None,
        value=payload,
        callback=_delivery_report,
    )

    if flush_timeout is None:
        return 0

    remaining = producer.flush(flush_timeout)
    if remaining:
        log.warning("%d message(s) still queued after flush on %s", remaining, topic)
    return remaining


# --- Consume -----------------------------------------------------------------


def consume_json(
    consumer: Consumer,
    handler: Callable[[Any, Any], bool],
    stop_event,
    model: type[BaseModel] | None = None,
    poll_timeout: float = 1.0,
) -> None:
    """Poll, decode and hand JSON messages to `handler` until `stop_event` is set.

    Args:
        consumer: A subscribed confluent-kafka consumer. It is closed on exit.
        handler: Called as handler(event, message). Return True to commit the
            offset; False leaves it uncommitted so the message is re-delivered
            after a restart or rebalance.
        stop_event: A threading.Event (or compatible object).
        model: Optional pydantic model to validate each payload into.
        poll_timeout: Seconds to wait per poll, so stop_event is checked often.
    """
    log.info("Starting Kafka consumer")

    try:
        while not stop_event.is_set():
            msg = consumer.poll(poll_timeout)
            if msg is None:
                continue

            if msg.error():
                log.error("Kafka error: %s", msg.error())
                continue

            try:
                data = json.loads(msg.value().decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                log.warning(
                    "Bad payload (decode/json): %s. Skipping. partition=%s offset=%s",
                    e,
                    msg.partition(),
                    msg.offset(),
                )
                consumer.commit(msg)
                continue

            if model is not None:
                try:
                    data = model.model_validate(data)
                except ValidationError as e:
                    log.warning("Bad event schema: %s. data=%s", e, data)
                    consumer.commit(msg)
                    continue

            if handler(data, msg):
                consumer.commit(msg)
    finally:
        consumer.close()
        log.info("Kafka consumer closed")
