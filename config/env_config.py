"""
Configuration management for different deployment environments.
Supports development, staging, and production configurations,
with per-variable overrides taken from the process environment (or a .env file).
"""
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

from config import settings

load_dotenv()

# PostgreSQL unquoted identifier rules, 63 bytes max
TABLE_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]{0,62}$')

SINKS = ('postgres', 'kafka', 'mongo')


class ConfigError(ValueError):
    """Raised when the environment holds an unusable setting."""


@dataclass
class DatabaseConfig:
    """Where parsed games are persisted."""
    connection_uri: str
    database_name: str = settings.DEFAULT_SCHEMA
    default_table: str = settings.DEFAULT_TABLE
    table_map: Dict[str, str] = field(default_factory=dict)


@dataclass
class KafkaConfig:
    """Kafka cluster configuration."""
    bootstrap_servers: list
    topic: str = settings.KAFKA_TOPIC
    compression_type: str = 'gzip'
    linger_ms: int = 100
    batch_size: int = 16384


@dataclass
class MongoConfig:
    """MongoDB deployment; each dataset table becomes a collection."""
    uri: str = settings.MONGODB_URI
    database: str = settings.MONGODB_DATABASE
    # Collection for root-level files; defaults to the table name
    collection: Optional[str] = None
    server_selection_timeout_ms: int = settings.MONGODB_SERVER_SELECTION_TIMEOUT_MS


@dataclass
class IngestConfig:
    """Traversal and worker pool settings."""
    root_path: str
    directory_workers: int = settings.DEFAULT_DIRECTORY_WORKERS
    file_workers: int = settings.DEFAULT_FILE_WORKERS
    directory_queue_size: int = settings.DIRECTORY_QUEUE_SIZE
    file_queue_size: int = settings.FILE_QUEUE_SIZE
    with_positions: bool = True
    site_id_prefix: str = settings.LICHESS_SITE_PREFIX
    max_retries: int = settings.PERSIST_MAX_RETRIES
    retry_backoff_ms: int = settings.PERSIST_RETRY_BACKOFF_MS
    sink: str = settings.DEFAULT_SINK


def parse_table_map(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``dir:table,dir2:table2`` into a mapping."""
    mapping = {}
    if not raw:
        return mapping
    for item in raw.split(','):
        item = item.strip()
        if not item:
            continue
        directory, sep, table = item.partition(':')
        if not sep or not directory.strip() or not table.strip():
            raise ConfigError(f"Invalid TABLE_MAP entry: {item!r}")
        mapping[directory.strip()] = table.strip()
    return mapping


def table_name_for(directory_name: str, table_map: Optional[Dict[str, str]] = None) -> str:
    """
    Resolve the table a directory's games are stored in.

    An explicit mapping wins; otherwise dashes in the directory name become
    underscores. Raises ConfigError if the result is not a valid identifier.
    """
    table_map = table_map or {}
    name = table_map.get(directory_name, directory_name.replace('-', '_'))
    if not TABLE_NAME_PATTERN.match(name):
        raise ConfigError(f"Directory {directory_name!r} maps to invalid table name {name!r}")
    return name


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if parsed < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {parsed}")
    return parsed


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [part.strip() for part in value.split(',') if part.strip()]


class EnvironmentConfig:
    """Environment-specific configurations."""

    def __init__(self, env: str = None):
        self.env = env or os.getenv('CHESS_ENV', 'development')
        self._load_config()
        self._apply_overrides()

    def _load_config(self):
        """Load configuration based on environment."""
        if self.env == 'production':
            self._load_production()
        elif self.env == 'staging':
            self._load_staging()
        else:
            self._load_development()

    def _load_development(self):
        """Development configuration (local laptop)."""
        self.database = DatabaseConfig(connection_uri=settings.DEFAULT_DATABASE_URL)
        self.kafka = KafkaConfig(bootstrap_servers=list(settings.KAFKA_BOOTSTRAP_SERVERS))
        self.mongo = MongoConfig()
        self.ingest = IngestConfig(
            root_path=settings.RAW_DATA_DIR,
            directory_workers=2,
            file_workers=4,  # Lower for development
        )

    def _load_staging(self):
        """Staging configuration (testing cluster)."""
        self.database = DatabaseConfig(
            connection_uri='postgresql://postgres-staging:5432/chess',
        )
        self.kafka = KafkaConfig(
            bootstrap_servers=[
                'kafka-staging-1:9092',
                'kafka-staging-2:9092',
            ],
        )
        self.mongo = MongoConfig(uri='mongodb://mongo-staging:27017')
        self.ingest = IngestConfig(root_path='/mnt/storage/chess/raw')

    def _load_production(self):
        """Production configuration (full cluster)."""
        self.database = DatabaseConfig(
            connection_uri='postgresql://postgres-prod:5432/chess',
        )
        self.kafka = KafkaConfig(
            bootstrap_servers=[
                'kafka-prod-1:9092',
                'kafka-prod-2:9092',
                'kafka-prod-3:9092',
            ],
            compression_type='lz4',  # Better compression for production
        )
        self.mongo = MongoConfig(uri='mongodb://mongo-prod-1:27017,mongo-prod-2:27017/?replicaSet=rs0')
        self.ingest = IngestConfig(
            root_path='/mnt/storage/chess/raw',
            directory_workers=4,
            file_workers=16,
            file_queue_size=200,
        )

    def _apply_overrides(self):
        """Environment variables take precedence over the profile."""
        self.database.connection_uri = os.getenv('DATABASE_URL', self.database.connection_uri)
        self.database.database_name = os.getenv('DATABASE_NAME', self.database.database_name)
        self.database.default_table = os.getenv('TABLE_NAME', self.database.default_table)
        self.database.table_map = parse_table_map(os.getenv('TABLE_MAP'))

        self.kafka.bootstrap_servers = _env_list('KAFKA_BOOTSTRAP_SERVERS', self.kafka.bootstrap_servers)
        self.kafka.topic = os.getenv('KAFKA_TOPIC', self.kafka.topic)

        self.mongo.uri = os.getenv('MONGODB_URI', self.mongo.uri)
        self.mongo.database = os.getenv('MONGODB_DATABASE', self.mongo.database)
        self.mongo.collection = os.getenv('MONGODB_COLLECTION') or self.mongo.collection

        ingest = self.ingest
        ingest.root_path = os.getenv('FOLDER_PATH', ingest.root_path)
        ingest.directory_workers = _env_int('DIRECTORY_WORKERS', ingest.directory_workers, minimum=1)
        ingest.file_workers = _env_int('FILE_WORKERS', ingest.file_workers, minimum=1)
        ingest.with_positions = _env_bool('WITH_POSITIONS', ingest.with_positions)
        ingest.site_id_prefix = os.getenv('SITE_ID_PREFIX', ingest.site_id_prefix)
        ingest.max_retries = _env_int('PERSIST_MAX_RETRIES', ingest.max_retries)
        ingest.retry_backoff_ms = _env_int('PERSIST_RETRY_BACKOFF_MS', ingest.retry_backoff_ms)
        ingest.sink = os.getenv('CHESS_SINK', ingest.sink).lower()
        if ingest.sink not in SINKS:
            raise ConfigError(f"CHESS_SINK must be one of {', '.join(SINKS)}, got {ingest.sink!r}")

        # Identifier problems surface at configuration time, not on insert
        if not TABLE_NAME_PATTERN.match(self.database.default_table):
            raise ConfigError(f"Invalid TABLE_NAME: {self.database.default_table!r}")
        for directory, table in self.database.table_map.items():
            if not TABLE_NAME_PATTERN.match(table):
                raise ConfigError(f"TABLE_MAP maps {directory!r} to invalid table name {table!r}")
        if self.mongo.collection and not TABLE_NAME_PATTERN.match(self.mongo.collection):
            raise ConfigError(f"Invalid MONGODB_COLLECTION: {self.mongo.collection!r}")

    def print_config(self):
        """Print current configuration."""
        print(f"\n{'='*60}")
        print(f"Environment: {self.env.upper()}")
        print(f"{'='*60}")
        print(f"Root path: {self.ingest.root_path}")
        print(f"Sink: {self.ingest.sink}")
        if self.ingest.sink == 'kafka':
            print(f"Kafka: {self.kafka.bootstrap_servers} -> {self.kafka.topic}")
        elif self.ingest.sink == 'mongo':
            print(f"MongoDB database: {self.mongo.database}")
        else:
            print(f"Database schema: {self.database.database_name}")
        print(f"Workers: {self.ingest.directory_workers} directories × {self.ingest.file_workers} files")
        print(f"Positions: {'on' if self.ingest.with_positions else 'off'}")
        print(f"{'='*60}\n")
