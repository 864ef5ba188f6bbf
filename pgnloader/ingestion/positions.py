"""
Replays a cleaned move list and records the position reached after every ply.
"""
import re
from typing import List

import chess

from pgnloader.logging_utils import get_logger

logger = get_logger(__name__)

CONTINUATION_PATTERN = re.compile(r'\d+\.\.\.')


class PythonChessEngine:
    """Move application backed by python-chess; positions are FEN strings."""

    def new_board(self) -> chess.Board:
        return chess.Board()

    def apply_move(self, board: chess.Board, move: str) -> chess.Board:
        board.push_san(move)
        return board

    def canonical_string(self, board: chess.Board) -> str:
        return board.fen()


def replay_tokens(moves: str) -> List[str]:
    """Extra cleanup for the replay grammar: drop ``N...`` markers and split."""
    return CONTINUATION_PATTERN.sub(' ', moves).split()


def reconstruct_positions(moves: str, engine) -> List[str]:
    """
    Apply each move in order from the initial position.

    Stops at the first move the engine rejects and returns what was
    accumulated up to that point.
    """
    positions = []
    board = engine.new_board()
    for ply, move in enumerate(replay_tokens(moves), start=1):
        try:
            board = engine.apply_move(board, move)
        except Exception as e:
            logger.debug("Replay stopped at ply %d (%r): %s", ply, move, e)
            break
        positions.append(engine.canonical_string(board))
    return positions
