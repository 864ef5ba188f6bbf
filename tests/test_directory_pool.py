import threading
from contextlib import contextmanager

import zstandard as zstd

from pgnloader.ingestion import directory_pool, pgn_parser
from pgnloader.ingestion.directory_pool import DirectoryWorkerPool
from pgnloader.monitoring.data_quality import DataQualityChecker
from pgnloader.monitoring.metrics import PipelineMetrics
from pgnloader.storage.base import FatalStorageError

from fakes import FakeSink, make_game, write_pgn


def _make_pool(sink, **kwargs):
    kwargs.setdefault("file_workers", 3)
    kwargs.setdefault("queue_size", 2)
    return DirectoryWorkerPool(sink, **kwargs)


def _build_dataset(root, files=25, games_per_file=3):
    for i in range(files):
        ids = [f"f{i}g{j}" for j in range(games_per_file)]
        write_pgn(root / f"part{i // 10}" / f"games_{i}.pgn", ids)
    return root


def test_pool_processes_every_file_exactly_once(tmp_path) -> None:
    root = _build_dataset(tmp_path / "lichess-2024", files=25)
    sink = FakeSink()
    metrics = PipelineMetrics()

    result = _make_pool(sink, metrics=metrics).process_directory("lichess-2024", str(root), "lichess_2024")

    assert result.ok
    assert result.files == 25
    assert result.failed_files == 0
    assert result.processed == 75
    assert sink.count("lichess_2024") == 75
    assert sink.calls == 75
    assert sink.tables == ["lichess_2024"]
    assert metrics.get_count("files", "files_processed") == 25
    assert metrics.get_count("games", "games_persisted") == 75


def test_pool_reingestion_is_idempotent(tmp_path) -> None:
    root = _build_dataset(tmp_path / "ds", files=4)
    sink = FakeSink()
    pool = _make_pool(sink)

    pool.process_directory("ds", str(root), "ds")
    once = sink.count("ds")
    second = pool.process_directory("ds", str(root), "ds")

    assert sink.count("ds") == once == 12
    assert second.processed == 12  # duplicates are successful no-ops


def test_pool_keeps_games_without_external_id(tmp_path) -> None:
    path = tmp_path / "ds" / "casual.pgn"
    path.parent.mkdir()
    path.write_text(make_game(None) * 3, encoding="utf-8")
    sink = FakeSink()

    result = _make_pool(sink).process_directory("ds", str(path.parent), "ds")

    assert result.processed == 3
    assert sink.count("ds") == 3


def test_pool_drops_failed_game_and_continues_file(tmp_path) -> None:
    write_pgn(tmp_path / "ds" / "a.pgn", ["g1", "bad", "g3"])
    sink = FakeSink(fail_ids={"bad"})
    metrics = PipelineMetrics()

    result = _make_pool(sink, metrics=metrics).process_directory("ds", str(tmp_path / "ds"), "ds")

    assert result.processed == 2
    assert [r.external_id for r in sink.rows["ds"]] == ["g1", "g3"]
    assert metrics.get_count("games", "games_failed") == 1
    assert result.failed_files == 0


def test_pool_retries_transient_failures(tmp_path) -> None:
    write_pgn(tmp_path / "ds" / "a.pgn", ["g1", "g2"])
    sink = FakeSink(flaky_ids={"g2"})

    result = _make_pool(sink, max_retries=1).process_directory("ds", str(tmp_path / "ds"), "ds")

    assert result.processed == 2
    assert sink.calls == 3


def test_pool_preserves_game_order_within_file(tmp_path) -> None:
    ids = [f"g{i}" for i in range(20)]
    write_pgn(tmp_path / "ds" / "a.pgn", ids)
    sink = FakeSink()

    _make_pool(sink).process_directory("ds", str(tmp_path / "ds"), "ds")

    assert [r.external_id for r in sink.rows["ds"]] == ids


def test_process_file_missing_file_is_file_scoped(tmp_path) -> None:
    sink = FakeSink()
    sink.ensure_table("ds")
    metrics = PipelineMetrics()

    outcome = _make_pool(sink, metrics=metrics).process_file(str(tmp_path / "missing.pgn"), "ds")

    assert outcome.failed is True
    assert outcome.processed == 0
    assert metrics.get_count("files", "files_failed") == 1


def test_pool_provisioning_failure_skips_directory(tmp_path) -> None:
    _build_dataset(tmp_path / "ds", files=2)
    sink = FakeSink(fail_tables={"ds"})
    metrics = PipelineMetrics()

    result = _make_pool(sink, metrics=metrics).process_directory("ds", str(tmp_path / "ds"), "ds")

    assert not result.ok
    assert "cannot create ds" in result.error
    assert result.processed == 0
    assert sink.calls == 0
    assert metrics.get_count("scheduler", "directories_failed") == 1


def test_pool_fatal_storage_error_cancels_run(tmp_path) -> None:
    _build_dataset(tmp_path / "ds", files=5, games_per_file=5)

    class DeadSink(FakeSink):
        def save(self, record, table):
            raise FatalStorageError("connection refused")

    cancel = threading.Event()
    sink = DeadSink()
    result = _make_pool(sink, cancel=cancel, file_workers=1, queue_size=1).process_directory(
        "ds", str(tmp_path / "ds"), "ds"
    )

    assert cancel.is_set()
    assert result.processed == 0
    assert result.files < 5


def test_pool_process_files_and_quality_checks(tmp_path) -> None:
    paths = [str(write_pgn(tmp_path / f"{name}.pgn", [name])) for name in ("x", "y")]
    quality = DataQualityChecker()
    sink = FakeSink()

    result = _make_pool(sink, quality=quality).process_files(".", paths, "games")

    assert result.processed == 2
    assert quality.get_report()["total_checked"] == 2
    assert quality.get_report()["valid"] == 2


def test_pool_truncated_zstd_file_fails_without_partial_game(tmp_path) -> None:
    ids = [f"g{i}" for i in range(2000)]
    data = zstd.ZstdCompressor().compress("".join(make_game(i) for i in ids).encode("utf-8"))
    (tmp_path / "ds").mkdir()
    (tmp_path / "ds" / "cut.pgn.zst").write_bytes(data[: len(data) // 2])
    sink = FakeSink()
    metrics = PipelineMetrics()

    result = _make_pool(sink, metrics=metrics).process_directory("ds", str(tmp_path / "ds"), "ds")

    rows = sink.rows["ds"]
    assert result.failed_files == 1
    assert result.processed == len(rows) > 0
    assert [r.external_id for r in rows] == ids[: len(rows)]
    assert all(r.moves == "e4 e5 Nf3 Nc6" for r in rows)
    assert metrics.get_count("files", "files_failed") == 1


def test_pool_read_error_mid_file_keeps_completed_games(tmp_path, monkeypatch) -> None:
    path = write_pgn(tmp_path / "ds" / "a.pgn", ["g1", "g2"])
    lines = path.read_text(encoding="utf-8").splitlines(keepends=True)
    second_start = lines.index('[Event "Rated Blitz game"]\n', 1)

    def failing_lines():
        yield from lines[: second_start + 2]
        raise OSError("Input/output error")

    @contextmanager
    def broken_stream(file_path):
        yield failing_lines()

    monkeypatch.setattr(pgn_parser, "open_pgn_stream", broken_stream)
    sink = FakeSink()

    result = _make_pool(sink).process_directory("ds", str(tmp_path / "ds"), "ds")

    assert [r.external_id for r in sink.rows["ds"]] == ["g1"]
    assert result.processed == 1
    assert result.files == 1
    assert result.failed_files == 1


def test_pool_unexpected_sink_error_is_game_scoped(tmp_path) -> None:
    write_pgn(tmp_path / "ds" / "a.pgn", ["g1", "g2", "g3"])

    class BuggySink(FakeSink):
        def save(self, record, table):
            if record.external_id == "g3":
                raise TypeError("unsupported operand")
            return super().save(record, table)

    sink = BuggySink()
    metrics = PipelineMetrics()

    result = _make_pool(sink, metrics=metrics).process_directory("ds", str(tmp_path / "ds"), "ds")

    assert sink.count("ds") == 2
    assert result.processed == 2
    assert result.files == 1
    assert result.failed_files == 0
    assert metrics.get_count("games", "games_failed") == 1


def test_process_file_unexpected_error_keeps_partial_outcome(tmp_path, monkeypatch) -> None:
    path = write_pgn(tmp_path / "a.pgn", ["g1", "g2", "g3"])
    real_parse_game = directory_pool.parse_game

    def parse_game(block, *args):
        if "lichess.org/g2" in block:
            raise RuntimeError("parser bug")
        return real_parse_game(block, *args)

    monkeypatch.setattr(directory_pool, "parse_game", parse_game)
    sink = FakeSink()
    sink.ensure_table("ds")
    metrics = PipelineMetrics()

    outcome = _make_pool(sink, metrics=metrics).process_file(str(path), "ds")

    assert outcome.failed is True
    assert outcome.processed == 1
    assert metrics.get_count("files", "files_failed") == 1
    assert metrics.get_count("games", "games_persisted") == 1
