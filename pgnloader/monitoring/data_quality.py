"""
Data quality checks for parsed game records.
Problems are reported, never fatal: a flagged record is still persisted.
"""
from typing import Dict, List, Tuple
import re
import threading

from pgnloader.ingestion.game_record import GameRecord


class DataQualityChecker:
    """Validates GameRecord contents and tallies issues across workers."""

    # Valid ECO code pattern (A00-E99)
    ECO_PATTERN = re.compile(r'^[A-E]\d{2}$')

    # Valid result patterns
    VALID_RESULTS = {'1-0', '0-1', '1/2-1/2', '*'}

    MAX_ELO = 4000
    MAX_MOVE_COUNT = 600

    def __init__(self):
        self._lock = threading.Lock()
        self.stats = {
            'total_checked': 0,
            'valid': 0,
            'invalid': 0,
            'errors_by_type': {}
        }

    def validate_game(self, game: GameRecord) -> Tuple[bool, List[str]]:
        """
        Validate a single game record.

        Returns:
            Tuple of (is_valid, list_of_issues)
        """
        issues = []

        if not game.white or not game.black:
            issues.append("Missing players")

        if game.result not in self.VALID_RESULTS:
            issues.append(f"Invalid result: {game.result!r}")

        if game.eco and not self.ECO_PATTERN.match(game.eco):
            issues.append(f"Invalid ECO code: {game.eco}")

        if not game.moves:
            issues.append("Empty movetext")
        elif game.move_count > self.MAX_MOVE_COUNT:
            issues.append(f"Suspiciously high move count: {game.move_count}")

        for player, elo in (('white_elo', game.white_elo), ('black_elo', game.black_elo)):
            if elo < 0 or elo > self.MAX_ELO:
                issues.append(f"Invalid {player}: {elo}")

        with self._lock:
            self.stats['total_checked'] += 1
            if issues:
                self.stats['invalid'] += 1
                for issue in issues:
                    issue_type = issue.split(':')[0]
                    self.stats['errors_by_type'][issue_type] = \
                        self.stats['errors_by_type'].get(issue_type, 0) + 1
            else:
                self.stats['valid'] += 1

        return len(issues) == 0, issues

    def get_quality_score(self) -> float:
        """Calculate overall data quality score (0-100)"""
        if self.stats['total_checked'] == 0:
            return 100.0
        return (self.stats['valid'] / self.stats['total_checked']) * 100

    def get_report(self) -> Dict:
        """Get comprehensive quality report"""
        with self._lock:
            return {
                'total_checked': self.stats['total_checked'],
                'valid': self.stats['valid'],
                'invalid': self.stats['invalid'],
                'quality_score': round(self.get_quality_score(), 2),
                'error_breakdown': dict(self.stats['errors_by_type'])
            }

    def print_report(self):
        """Print formatted quality report"""
        report = self.get_report()
        print(f"\n{'='*60}")
        print(f"Data Quality Report")
        print(f"{'='*60}")
        print(f"Total Games Checked: {report['total_checked']:,}")
        print(f"Valid: {report['valid']:,}")
        print(f"Invalid: {report['invalid']:,}")
        print(f"Quality Score: {report['quality_score']}%")

        if report['error_breakdown']:
            print(f"\nError Breakdown:")
            for error_type, count in sorted(report['error_breakdown'].items(),
                                           key=lambda x: x[1], reverse=True):
                print(f"  {error_type}: {count:,}")
        print(f"{'='*60}\n")
