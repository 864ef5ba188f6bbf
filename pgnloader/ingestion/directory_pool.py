import os
import threading
import time
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

import zstandard as zstd

from config.settings import LICHESS_SITE_PREFIX
from pgnloader.ingestion.pgn_parser import parse_game, read_game_blocks
from pgnloader.ingestion.work_queue import run_bounded
from pgnloader.logging_utils import get_logger
from pgnloader.monitoring.metrics import PipelineMetrics
from pgnloader.storage.base import FatalStorageError, PersistenceError, StorageError

logger = get_logger(__name__)

PROGRESS_EVERY = 500


@dataclass
class FileOutcome:
    path: str
    processed: int = 0
    duplicates: int = 0
    failed_games: int = 0
    failed: bool = False


@dataclass
class DirectoryResult:
    name: str
    table: str
    processed: int = 0
    files: int = 0
    failed_files: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DirectoryWorkerPool:
    """
    Processes every file of one dataset with a fixed number of file workers.

    Files are discovered by a walk that feeds a bounded queue; each worker
    splits its file into games, parses them and hands each record to the sink.
    """

    def __init__(
        self,
        sink,
        file_workers: int = 8,
        queue_size: int = 100,
        engine=None,
        site_id_prefix: Optional[str] = LICHESS_SITE_PREFIX,
        max_retries: int = 0,
        retry_backoff_ms: int = 0,
        metrics: Optional[PipelineMetrics] = None,
        quality=None,
        cancel: Optional[threading.Event] = None,
    ):
        self.sink = sink
        self.file_workers = file_workers
        self.queue_size = queue_size
        self.engine = engine
        self.site_id_prefix = site_id_prefix
        self.max_retries = max(max_retries, 0)
        self.retry_backoff = max(retry_backoff_ms, 0) / 1000.0
        self.metrics = metrics or PipelineMetrics()
        self.quality = quality
        self.cancel = cancel or threading.Event()

    def process_directory(self, name: str, dir_path: str, table: str) -> DirectoryResult:
        """Provision ``table`` then ingest every regular file under ``dir_path``."""
        return self._run(name, table, self._walk(name, dir_path))

    def process_files(self, name: str, paths: Iterable[str], table: str) -> DirectoryResult:
        """Same as process_directory, for an explicit list of files."""
        return self._run(name, table, iter(paths))

    def _run(self, name: str, table: str, paths: Iterator[str]) -> DirectoryResult:
        result = DirectoryResult(name=name, table=table)
        try:
            self.sink.ensure_table(table)
        except StorageError as e:
            if isinstance(e, FatalStorageError):
                self.cancel.set()
            logger.error("[%s] Skipping directory: %s", name, e)
            self.metrics.record_event('scheduler', 'directories_failed')
            result.error = str(e)
            return result

        logger.info("[%s] Starting -> %s", name, table)
        outcomes = run_bounded(
            paths,
            lambda path: self.process_file(path, table),
            workers=self.file_workers,
            queue_size=self.queue_size,
            cancel=self.cancel,
            thread_name_prefix=f"files-{table}",
        )
        for outcome in outcomes:
            result.files += 1
            result.processed += outcome.processed
            if outcome.failed:
                result.failed_files += 1
        logger.info("[%s] FINISHED: %s games from %s files (%s failed).",
                    name, f"{result.processed:,}", result.files, result.failed_files)
        return result

    def _walk(self, name: str, dir_path: str) -> Iterator[str]:
        def on_error(err):
            logger.warning("[%s] Error accessing %s: %s", name, getattr(err, 'filename', dir_path), err)
            self.metrics.record_event('walker', 'walk_errors')

        for root, dirnames, filenames in os.walk(dir_path, onerror=on_error):
            dirnames.sort()
            for filename in sorted(filenames):
                path = os.path.join(root, filename)
                if os.path.isfile(path):
                    yield path

    def process_file(self, file_path: str, table: str) -> FileOutcome:
        """Parse and persist every game of one file, in file order."""
        label = os.path.basename(file_path)
        outcome = FileOutcome(path=file_path)
        try:
            for block in read_game_blocks(file_path):
                if self.cancel.is_set():
                    break
                record = parse_game(block, self.site_id_prefix, self.engine)
                if self.quality is not None:
                    is_valid, issues = self.quality.validate_game(record)
                    if not is_valid:
                        logger.debug("[%s] %s: %s", label, record.external_id or '?', '; '.join(issues))
                saved = self._save(record, table, label)
                if saved is None:
                    outcome.failed_games += 1
                    continue
                outcome.processed += 1
                if not saved:
                    outcome.duplicates += 1
                if outcome.processed % PROGRESS_EVERY == 0:
                    logger.info("[%s] Persisted %s games...", label, f"{outcome.processed:,}")
        except (OSError, zstd.ZstdError) as e:
            logger.error("[%s] Error reading file: %s", label, e)
            outcome.failed = True
        except Exception:
            logger.exception("[%s] Unexpected error after %s games", label, outcome.processed)
            outcome.failed = True

        self.metrics.record_event('files', 'files_failed' if outcome.failed else 'files_processed')
        self.metrics.record_event('games', 'games_persisted', outcome.processed - outcome.duplicates)
        self.metrics.record_event('games', 'games_duplicate', outcome.duplicates)
        self.metrics.record_event('games', 'games_failed', outcome.failed_games)
        return outcome

    def _save(self, record, table: str, label: str) -> Optional[bool]:
        """
        Persist one record, retrying with exponential backoff.

        Returns True for a new row, False for a duplicate, None if it was dropped.
        """
        attempt = 0
        while True:
            start = time.perf_counter()
            try:
                inserted = self.sink.save(record, table)
            except (PersistenceError, FatalStorageError) as e:
                if attempt >= self.max_retries or self.cancel.is_set():
                    if isinstance(e, FatalStorageError):
                        logger.error("[%s] Storage unavailable, stopping run: %s", label, e)
                        self.cancel.set()
                    else:
                        logger.warning("[%s] Dropping game %s: %s", label, record.external_id or '?', e)
                    return None
                wait_seconds = self.retry_backoff * (2 ** attempt)
                logger.warning("[%s] Save failed, retrying in %.2fs (attempt %s/%s): %s",
                               label, wait_seconds, attempt + 1, self.max_retries, e)
                if wait_seconds:
                    time.sleep(wait_seconds)
                attempt += 1
                continue
            except Exception:
                logger.exception("[%s] Unexpected error saving game %s", label, record.external_id or '?')
                return None
            self.metrics.record_latency('sink', 'save', (time.perf_counter() - start) * 1000)
            return inserted
