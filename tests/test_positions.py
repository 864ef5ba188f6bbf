import chess

from pgnloader.ingestion.positions import (
    PythonChessEngine,
    reconstruct_positions,
    replay_tokens,
)


class ExplodingEngine(PythonChessEngine):
    """Fails with an unexpected error type on a chosen move."""

    def __init__(self, bad_move):
        self.bad_move = bad_move

    def apply_move(self, board, move):
        if move == self.bad_move:
            raise RuntimeError("engine crashed")
        return super().apply_move(board, move)


def test_reconstruct_positions_one_per_ply() -> None:
    positions = reconstruct_positions("e4 e5 Nf3", PythonChessEngine())
    assert positions == [
        "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1",
        "rnbqkbnr/pppp1ppp/8/4p3/4P3/8/PPPP1PPP/RNBQKBNR w KQkq - 0 2",
        "rnbqkbnr/pppp1ppp/8/4p3/4P3/5N2/PPPP1PPP/RNBQKB1R b KQkq - 1 2",
    ]


def test_reconstruct_positions_stops_at_illegal_move() -> None:
    positions = reconstruct_positions("e4 e5 Ke3 Nf6", PythonChessEngine())
    assert len(positions) == 2


def test_reconstruct_positions_stops_at_unparsable_token() -> None:
    positions = reconstruct_positions("d4 d5 c4 1//2", PythonChessEngine())
    assert len(positions) == 3


def test_reconstruct_positions_contains_engine_errors() -> None:
    positions = reconstruct_positions("e4 e5 Nf3 Nc6", ExplodingEngine("Nf3"))
    assert len(positions) == 2


def test_reconstruct_positions_empty_moves() -> None:
    assert reconstruct_positions("", PythonChessEngine()) == []


def test_replay_tokens_drops_continuation_markers() -> None:
    assert replay_tokens("e4  3... e5") == ["e4", "e5"]


def test_engine_positions_are_fen() -> None:
    engine = PythonChessEngine()
    board = engine.apply_move(engine.new_board(), "d4")
    assert chess.Board(engine.canonical_string(board)).fen() == engine.canonical_string(board)
