"""
Entry point: walks a root folder of PGN datasets and persists every game.

Each subdirectory of the root is one dataset stored in its own table; regular
files sitting directly in the root go to the default table.
"""
import argparse
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from config.env_config import (
    ConfigError,
    DatabaseConfig,
    EnvironmentConfig,
    IngestConfig,
    SINKS,
    table_name_for,
)
from pgnloader.ingestion.directory_pool import DirectoryResult, DirectoryWorkerPool
from pgnloader.ingestion.positions import PythonChessEngine
from pgnloader.ingestion.work_queue import run_bounded
from pgnloader.logging_utils import get_logger, set_level
from pgnloader.monitoring.data_quality import DataQualityChecker
from pgnloader.monitoring.metrics import PipelineMetrics
from pgnloader.storage.base import FatalStorageError

logger = get_logger(__name__)

ROOT_DATASET = '.'


class IngestError(RuntimeError):
    """The root path cannot be enumerated."""


@dataclass
class Dataset:
    name: str
    table: Optional[str]
    path: Optional[str] = None
    files: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class IngestResult:
    total_processed: int = 0
    directories: List[DirectoryResult] = field(default_factory=list)
    aborted: bool = False

    @property
    def failed_directories(self) -> List[DirectoryResult]:
        return [d for d in self.directories if not d.ok]


def plan_datasets(root_path: str, database: DatabaseConfig) -> List[Dataset]:
    """
    Enumerate the immediate children of ``root_path`` and resolve their tables.

    Raises IngestError when the root cannot be listed. Table names are checked
    here, before anything is dispatched.
    """
    if os.path.isfile(root_path):
        return [Dataset(name=os.path.basename(root_path), table=database.default_table, files=[root_path])]

    try:
        with os.scandir(root_path) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        raise IngestError(f"Cannot read root path {root_path}: {e}") from e

    datasets = []
    root_files = []
    for entry in entries:
        try:
            if entry.is_dir():
                try:
                    table = table_name_for(entry.name, database.table_map)
                    datasets.append(Dataset(name=entry.name, table=table, path=entry.path))
                except ConfigError as e:
                    datasets.append(Dataset(name=entry.name, table=None, path=entry.path, error=str(e)))
            elif entry.is_file():
                root_files.append(entry.path)
        except OSError as e:
            logger.warning("Error accessing %s: %s", entry.path, e)

    if root_files:
        datasets.append(Dataset(name=ROOT_DATASET, table=database.default_table, files=root_files))

    # One dataset per table; later claimants are skipped
    owners = {}
    for dataset in datasets:
        if dataset.error:
            continue
        owner = owners.setdefault(dataset.table, dataset.name)
        if owner != dataset.name:
            dataset.error = f"Table {dataset.table!r} is already used by {owner!r}"
    return datasets


def ingest_root(
    sink,
    ingest: IngestConfig,
    database: DatabaseConfig,
    metrics: Optional[PipelineMetrics] = None,
    quality: Optional[DataQualityChecker] = None,
    engine=None,
) -> IngestResult:
    """
    Process every dataset under ``ingest.root_path`` with at most
    ``ingest.directory_workers`` datasets in flight. Blocks until all are done.
    """
    metrics = metrics or PipelineMetrics()
    datasets = plan_datasets(ingest.root_path, database)
    cancel = threading.Event()
    if engine is None and ingest.with_positions:
        engine = PythonChessEngine()

    pool = DirectoryWorkerPool(
        sink,
        file_workers=ingest.file_workers,
        queue_size=ingest.file_queue_size,
        engine=engine if ingest.with_positions else None,
        site_id_prefix=ingest.site_id_prefix,
        max_retries=ingest.max_retries,
        retry_backoff_ms=ingest.retry_backoff_ms,
        metrics=metrics,
        quality=quality,
        cancel=cancel,
    )

    def process(dataset: Dataset) -> DirectoryResult:
        if dataset.error:
            logger.error("[%s] Skipping directory: %s", dataset.name, dataset.error)
            metrics.record_event('scheduler', 'directories_failed')
            return DirectoryResult(name=dataset.name, table='', error=dataset.error)
        if dataset.path is not None:
            return pool.process_directory(dataset.name, dataset.path, dataset.table)
        return pool.process_files(dataset.name, dataset.files, dataset.table)

    logger.info("Found %s datasets under %s", len(datasets), ingest.root_path)
    results = run_bounded(
        datasets,
        process,
        workers=ingest.directory_workers,
        queue_size=ingest.directory_queue_size,
        cancel=cancel,
        thread_name_prefix='directories',
    )

    return IngestResult(
        total_processed=sum(r.processed for r in results),
        directories=sorted(results, key=lambda r: r.name),
        aborted=cancel.is_set(),
    )


def build_sink(env_config: EnvironmentConfig):
    """Create the configured sink. Raises FatalStorageError if it cannot connect."""
    ingest = env_config.ingest
    if ingest.sink == 'kafka':
        from pgnloader.storage.kafka_sink import KafkaSink
        return KafkaSink(env_config.kafka)
    if ingest.sink == 'mongo':
        from pgnloader.storage.mongo_sink import MongoSink
        return MongoSink(env_config.mongo, default_table=env_config.database.default_table)
    from pgnloader.storage.postgres_sink import PostgresSink
    return PostgresSink(
        env_config.database.connection_uri,
        schema=env_config.database.database_name,
        max_connections=ingest.directory_workers * (ingest.file_workers + 1),
    )


def print_result(result: IngestResult):
    print(f"\n{'='*50}")
    print(f"INGESTION {'ABORTED' if result.aborted else 'COMPLETE'}!")
    print(f"{'='*50}")
    for directory in result.directories:
        status = f"FAILED ({directory.error})" if directory.error else f"{directory.processed:,} games"
        print(f"{directory.name:<30} {status}")
    print(f"{'='*50}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Load PGN game collections into a database.")
    parser.add_argument('--root', help="Folder of PGN datasets (defaults to FOLDER_PATH)")
    parser.add_argument('--env', help="Configuration profile (defaults to CHESS_ENV)")
    parser.add_argument('--sink', choices=SINKS, help="Where to persist games")
    parser.add_argument('--no-positions', action='store_true', help="Skip replaying positions")
    parser.add_argument('--directory-workers', type=int, help="Datasets processed at once")
    parser.add_argument('--file-workers', type=int, help="Files processed at once per dataset")
    parser.add_argument('--metrics-json', help="Write run metrics to this JSON file")
    parser.add_argument('--verbose', action='store_true', help="Log per-game diagnostics")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.verbose:
        set_level(logging.DEBUG)
    try:
        env_config = EnvironmentConfig(args.env)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    ingest = env_config.ingest
    if args.root:
        ingest.root_path = args.root
    if args.sink:
        ingest.sink = args.sink
    if args.no_positions:
        ingest.with_positions = False
    if args.directory_workers:
        ingest.directory_workers = max(args.directory_workers, 1)
    if args.file_workers:
        ingest.file_workers = max(args.file_workers, 1)
    env_config.print_config()

    try:
        sink = build_sink(env_config)
    except FatalStorageError as e:
        logger.error("%s", e)
        return 1

    metrics = PipelineMetrics()
    quality = DataQualityChecker()
    with sink:
        try:
            result = ingest_root(sink, ingest, env_config.database, metrics=metrics, quality=quality)
        except IngestError as e:
            logger.error("%s", e)
            return 1

    print_result(result)
    metrics.print_summary()
    quality.print_report()
    if args.metrics_json:
        metrics.export_json(args.metrics_json)
    print(f"Finished. Total Games Processed: {result.total_processed}")
    return 1 if result.aborted else 0


if __name__ == "__main__":
    sys.exit(main())
