"""
Kafka sink: each game is published as a JSON message keyed by its external id,
so a log-compacted topic keeps one message per game.
"""
import json
from typing import Callable

from kafka import KafkaProducer
from kafka.errors import KafkaError

from config.env_config import KafkaConfig
from pgnloader.ingestion.game_record import GameRecord
from pgnloader.logging_utils import get_logger
from pgnloader.storage.base import FatalStorageError, GameSink, PersistenceError

logger = get_logger(__name__)


def create_producer(kafka_config: KafkaConfig, producer_factory: Callable = KafkaProducer):
    return producer_factory(
        bootstrap_servers=kafka_config.bootstrap_servers,
        key_serializer=lambda k: k.encode('utf-8') if k is not None else None,
        value_serializer=lambda v: json.dumps(v).encode('utf-8'),
        # Optimize for throughput
        batch_size=kafka_config.batch_size,
        linger_ms=kafka_config.linger_ms,
        compression_type=kafka_config.compression_type,
    )


class KafkaSink(GameSink):
    name = 'kafka'

    def __init__(self, kafka_config: KafkaConfig, producer_factory: Callable = KafkaProducer,
                 send_timeout: float = 10.0):
        self.topic = kafka_config.topic
        self.send_timeout = send_timeout
        try:
            self._producer = create_producer(kafka_config, producer_factory)
        except KafkaError as exc:
            raise FatalStorageError(f"Failed to create Kafka producer: {exc}") from exc

    def ensure_table(self, table: str) -> None:
        # Tables are a payload field here; the topic is shared
        logger.info("[%s] Publishing to topic %s", table, self.topic)

    def save(self, record: GameRecord, table: str) -> bool:
        payload = record.to_document()
        payload['table'] = table
        try:
            future = self._producer.send(self.topic, key=record.external_id or None, value=payload)
            future.get(timeout=self.send_timeout)
        except KafkaError as exc:
            raise PersistenceError(f"Failed to publish game to {self.topic}: {exc}") from exc
        return True

    def close(self) -> None:
        try:
            self._producer.flush()
        finally:
            self._producer.close()
