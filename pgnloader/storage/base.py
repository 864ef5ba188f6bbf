"""Sink interface and the storage error taxonomy."""


class StorageError(Exception):
    """Base class for sink failures."""


class ProvisioningError(StorageError):
    """A directory's table could not be created; that directory is skipped."""


class PersistenceError(StorageError):
    """One record could not be written; the record is dropped."""


class FatalStorageError(StorageError):
    """The sink is unusable (no connection); the whole run should stop."""


class GameSink:
    """
    Where parsed games end up.

    Implementations must be safe to call from many worker threads at once.
    """

    name = 'sink'

    def ensure_table(self, table: str) -> None:
        raise NotImplementedError

    def save(self, record, table: str) -> bool:
        """Write one record. Returns False when it was a duplicate no-op."""
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
