import codecs
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, List, Optional

import zstandard as zstd

from config.settings import GAME_START_MARKER, LICHESS_SITE_PREFIX
from pgnloader.ingestion.game_record import GameRecord
from pgnloader.ingestion.positions import reconstruct_positions
from pgnloader.logging_utils import get_logger

logger = get_logger(__name__)

ZSTD_MAGIC = b'\x28\xb5\x2f\xfd'
READ_CHUNK_SIZE = 1 << 20

TAG_PATTERN = re.compile(r'\[(\w+)\s+"((?:[^"\\]|\\.)*)"\]')
COMMENT_PATTERN = re.compile(r'\{[^}]*\}')
CONTINUATION_PATTERN = re.compile(r'\d+\.\.\.')
# Comments, move numbers, scores like 1-0, stray periods
MOVE_NOISE_PATTERN = re.compile(r'\{[^}]*\}|\b\d+\.|\d+-\d+|\.')
# A move number followed by its ply text, up to the next move number
MOVE_RUN_PATTERN = re.compile(r'\d+\.\s+(.*?)(?=\s\d+\.\s|\Z)', re.DOTALL)
LEADING_INT_PATTERN = re.compile(r'\s*([+-]?\d+)')

# The last token swept up by the move runs is normally the result marker.
RESULT_TOKEN_BIAS = 1

STRING_TAGS = {
    'Event': 'event',
    'Site': 'site',
    'Opening': 'opening',
    'ECO': 'eco',
    'Result': 'result',
    'White': 'white',
    'Black': 'black',
    'TimeControl': 'time_control',
    'Termination': 'termination',
}
INT_TAGS = {
    'WhiteElo': 'white_elo',
    'BlackElo': 'black_elo',
}


def _zstd_chunks(fh) -> Iterator[bytes]:
    """
    Decompress every frame of a zstd file.

    Raises ZstdError when the input ends inside a frame, after yielding
    whatever that frame had decoded so far.
    """
    dctx = zstd.ZstdDecompressor()
    dobj = dctx.decompressobj()
    in_frame = False
    for data in iter(lambda: fh.read(READ_CHUNK_SIZE), b''):
        while data:
            in_frame = True
            chunk = dobj.decompress(data)
            if chunk:
                yield chunk
            if not dobj.eof:
                break
            data = dobj.unused_data
            dobj = dctx.decompressobj()
            in_frame = False
    if in_frame:
        raise zstd.ZstdError(f"truncated zstd frame in {getattr(fh, 'name', 'stream')}")


def _decode_lines(chunks: Iterable[bytes]) -> Iterator[str]:
    """Decode UTF-8 chunks and yield complete lines, each ending in '\\n'."""
    decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
    pending = ''
    for chunk in chunks:
        lines = (pending + decoder.decode(chunk)).split('\n')
        pending = lines.pop()
        for line in lines:
            yield line + '\n'
    pending += decoder.decode(b'', final=True)
    if pending:
        yield pending


@contextmanager
def open_pgn_stream(file_path):
    """
    Open a plain text PGN file or a .zst compressed one as an iterable of lines.
    Compression is detected from the magic number, not the file name.
    """
    with open(file_path, 'rb') as f:
        is_zstd = f.read(4) == ZSTD_MAGIC

    if is_zstd:
        with open(file_path, 'rb') as fh:
            yield _decode_lines(_zstd_chunks(fh))
    else:
        with open(file_path, 'r', encoding='utf-8', errors='replace') as text_stream:
            yield text_stream


def split_games(lines: Iterable[str]) -> Iterator[str]:
    """
    Split a stream of lines into raw game blocks.

    A block starts at each line beginning with the start-of-game marker and
    runs up to the next one or the end of the stream. Whitespace-only
    leftovers are never emitted as a block.
    """
    buffer: List[str] = []
    has_content = False
    for line in lines:
        if line.startswith(GAME_START_MARKER):
            if has_content:
                yield ''.join(buffer)
            buffer = []
            has_content = False
        buffer.append(line.rstrip('\r\n') + '\n')
        if not has_content and line.strip():
            has_content = True
    if has_content:
        yield ''.join(buffer)


def read_game_blocks(file_path) -> Iterator[str]:
    """Yield the raw game blocks of one file, in file order."""
    with open_pgn_stream(file_path) as stream:
        yield from split_games(stream)


def movetext_lines(block: str) -> List[str]:
    """Lines that start with a digit; tag lines never do."""
    return [line for line in block.split('\n') if line[:1].isdigit()]


def normalize_moves(movetext: str) -> str:
    """Strip comments, move numbers, scores and periods, then collapse whitespace."""
    return ' '.join(MOVE_NOISE_PATTERN.sub('', movetext).split())


def parse_moves(block: str) -> str:
    return normalize_moves(' '.join(movetext_lines(block)))


def move_tokens(block: str) -> List[str]:
    """
    Collect the ply tokens of every ``N. <plies>`` run in the movetext.

    The result marker, when present on a movetext line, ends up as the last
    token of the last run.
    """
    text = ' '.join(movetext_lines(block))
    text = CONTINUATION_PATTERN.sub(' ', COMMENT_PATTERN.sub(' ', text))
    tokens = []
    for match in MOVE_RUN_PATTERN.finditer(text):
        tokens.extend(match.group(1).split())
    return tokens


def count_moves(block: str) -> int:
    return max(len(move_tokens(block)) - RESULT_TOKEN_BIAS, 0)


def parse_int(value: str) -> int:
    """Leading integer of a tag value, 0 when there is none."""
    match = LEADING_INT_PATTERN.match(value)
    return int(match.group(1)) if match else 0


def _parse_date(value: str):
    try:
        return datetime.strptime(value, '%Y.%m.%d').date()
    except ValueError:
        logger.debug("Unparsable Date tag %r, leaving it empty", value)
        return None


def _parse_time(value: str):
    try:
        return datetime.strptime(value, '%H:%M:%S').time()
    except ValueError:
        logger.debug("Unparsable UTCTime tag %r, leaving it empty", value)
        return None


def parse_tags(block: str) -> dict:
    """Map recognized tags onto GameRecord field values; others are ignored."""
    fields = {}
    for match in TAG_PATTERN.finditer(block):
        tag = match.group(1)
        value = match.group(2).replace('\\"', '"').replace('\\\\', '\\')
        if tag in STRING_TAGS:
            fields[STRING_TAGS[tag]] = value
        elif tag in INT_TAGS:
            fields[INT_TAGS[tag]] = parse_int(value)
        elif tag == 'Date':
            fields['date'] = _parse_date(value)
        elif tag == 'UTCTime':
            fields['time'] = _parse_time(value)
    return fields


def external_id_from_site(site: str, prefix: Optional[str] = LICHESS_SITE_PREFIX) -> str:
    """The Site URL with the known prefix removed, or '' for any other site."""
    if prefix and site.startswith(prefix):
        return site[len(prefix):].strip('/')
    return ''


def parse_game(block: str, site_id_prefix: Optional[str] = LICHESS_SITE_PREFIX, engine=None) -> GameRecord:
    """
    Parse one raw game block into a GameRecord.

    Never raises on malformed input: missing or broken tags fall back to the
    field defaults. Positions are only replayed when an engine is given.
    """
    fields = parse_tags(block)
    moves = parse_moves(block)
    positions = ()
    if engine is not None:
        positions = tuple(reconstruct_positions(moves, engine))
    return GameRecord(
        external_id=external_id_from_site(fields.get('site', ''), site_id_prefix),
        moves=moves,
        move_count=count_moves(block),
        positions=positions,
        **fields,
    )
