"""
Data model for one parsed game.
"""
from dataclasses import dataclass, field
from datetime import date, time
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class GameRecord:
    """A game block's tags, cleaned movetext and replayed positions."""
    external_id: str = ''  # Empty means the record is not deduplicated
    event: str = ''
    site: str = ''
    opening: str = ''
    eco: str = ''
    result: str = ''
    white: str = ''
    black: str = ''
    time_control: str = ''
    termination: str = ''
    white_elo: int = 0
    black_elo: int = 0
    date: Optional[date] = None
    time: Optional[time] = None
    moves: str = ''
    move_count: int = 0
    positions: Tuple[str, ...] = field(default_factory=tuple)

    def to_document(self) -> Dict:
        """JSON-friendly representation, field for field."""
        return {
            'external_id': self.external_id or None,
            'event': self.event,
            'site': self.site,
            'opening': self.opening,
            'eco': self.eco,
            'result': self.result,
            'white': self.white,
            'black': self.black,
            'time_control': self.time_control,
            'termination': self.termination,
            'white_elo': self.white_elo,
            'black_elo': self.black_elo,
            'date': self.date.isoformat() if self.date else None,
            'time': self.time.isoformat() if self.time else None,
            'moves': self.moves,
            'move_count': self.move_count,
            'positions': list(self.positions),
        }
