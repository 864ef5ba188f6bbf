"""MongoDB sink: one collection per dataset, deduplicated on external_id."""
from typing import Callable, Optional

from pymongo import ASCENDING, MongoClient, UpdateOne
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from config.env_config import MongoConfig
from pgnloader.ingestion.game_record import GameRecord
from pgnloader.ingestion.pgn_parser import normalize_moves
from pgnloader.logging_utils import get_logger
from pgnloader.storage.base import (
    FatalStorageError,
    GameSink,
    PersistenceError,
    ProvisioningError,
)

logger = get_logger(__name__)

EXTERNAL_ID_INDEX = 'external_id_unique'


class MongoSink(GameSink):
    name = 'mongo'

    def __init__(
        self,
        mongo_config: MongoConfig,
        default_table: Optional[str] = None,
        client_factory: Callable = MongoClient,
    ):
        self.database_name = mongo_config.database
        self.default_table = default_table
        self.default_collection = mongo_config.collection
        try:
            self._client = client_factory(
                mongo_config.uri,
                serverSelectionTimeoutMS=mongo_config.server_selection_timeout_ms,
            )
            self._client.admin.command('ping')
        except PyMongoError as exc:
            raise FatalStorageError(f"Failed to connect to MongoDB: {exc}") from exc
        self._db = self._client[self.database_name]

    def collection_name(self, table: str) -> str:
        if self.default_collection and table == self.default_table:
            return self.default_collection
        return table

    def _collection(self, table: str):
        return self._db[self.collection_name(table)]

    def ensure_table(self, table: str) -> None:
        # Games without an external id are stored but never deduplicated
        try:
            self._collection(table).create_index(
                [('external_id', ASCENDING)],
                name=EXTERNAL_ID_INDEX,
                unique=True,
                partialFilterExpression={'external_id': {'$type': 'string'}},
            )
        except ConnectionFailure as exc:
            raise FatalStorageError(f"Lost MongoDB connection: {exc}") from exc
        except PyMongoError as exc:
            raise ProvisioningError(
                f"Failed to create index on {self.database_name}.{self.collection_name(table)}: {exc}"
            ) from exc

    def save(self, record: GameRecord, table: str) -> bool:
        try:
            self._collection(table).insert_one(record.to_document())
        except DuplicateKeyError:
            return False
        except ConnectionFailure as exc:
            raise FatalStorageError(f"Lost MongoDB connection: {exc}") from exc
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to insert game into {self.collection_name(table)}: {exc}") from exc
        return True

    def reclean_moves(self, table: str, batch_size: int = 1000) -> int:
        """
        Re-apply move normalization to every stored document of ``table``.

        Returns the number of documents whose moves field changed.
        """
        collection = self._collection(table)
        updated = 0
        pending = []
        try:
            for doc in collection.find({}, {'moves': 1}, batch_size=batch_size):
                moves = doc.get('moves') or ''
                cleaned = normalize_moves(moves)
                if cleaned != moves:
                    pending.append(UpdateOne({'_id': doc['_id']}, {'$set': {'moves': cleaned}}))
                if len(pending) >= batch_size:
                    updated += collection.bulk_write(pending, ordered=False).modified_count
                    pending = []
                    logger.info("[%s] Re-cleaned %s documents", table, f"{updated:,}")
            if pending:
                updated += collection.bulk_write(pending, ordered=False).modified_count
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to re-clean moves in {self.collection_name(table)}: {exc}") from exc
        return updated

    def close(self) -> None:
        self._client.close()
