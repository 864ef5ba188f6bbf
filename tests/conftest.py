import sys
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

ENV_VARS = (
    "CHESS_ENV",
    "CHESS_SINK",
    "DATABASE_URL",
    "DATABASE_NAME",
    "TABLE_NAME",
    "TABLE_MAP",
    "FOLDER_PATH",
    "DIRECTORY_WORKERS",
    "FILE_WORKERS",
    "WITH_POSITIONS",
    "SITE_ID_PREFIX",
    "PERSIST_MAX_RETRIES",
    "PERSIST_RETRY_BACKOFF_MS",
    "KAFKA_BOOTSTRAP_SERVERS",
    "KAFKA_TOPIC",
    "MONGODB_URI",
    "MONGODB_DATABASE",
    "MONGODB_COLLECTION",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
