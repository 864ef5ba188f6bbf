import os

# Paths
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DATA_DIR = os.path.join(BASE_DIR, 'data')
RAW_DATA_DIR = os.path.join(DATA_DIR, 'raw')

# Worker pools: D directories at once, M files per directory
DEFAULT_DIRECTORY_WORKERS = 3
DEFAULT_FILE_WORKERS = 8
DIRECTORY_QUEUE_SIZE = 10
FILE_QUEUE_SIZE = 100

# PGN conventions
GAME_START_MARKER = '[Event '
LICHESS_SITE_PREFIX = 'https://lichess.org/'

# Storage
DEFAULT_SINK = 'postgres'
DEFAULT_DATABASE_URL = 'postgresql://localhost:5432/chess'
DEFAULT_SCHEMA = 'public'
DEFAULT_TABLE = 'games'
PERSIST_MAX_RETRIES = 2
PERSIST_RETRY_BACKOFF_MS = 200

# Kafka Settings
KAFKA_BOOTSTRAP_SERVERS = ['localhost:9092']
KAFKA_TOPIC = 'chess.games'

# MongoDB Settings
MONGODB_URI = 'mongodb://localhost:27017'
MONGODB_DATABASE = 'chess'
MONGODB_SERVER_SELECTION_TIMEOUT_MS = 5000
