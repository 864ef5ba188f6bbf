import argparse
import os
import sys

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.env_config import ConfigError, EnvironmentConfig, TABLE_NAME_PATTERN
from pgnloader.storage.base import StorageError


def open_sink(env_config):
    """The sink holding stored games; Kafka topics cannot be rewritten."""
    if env_config.ingest.sink == 'mongo':
        from pgnloader.storage.mongo_sink import MongoSink
        return MongoSink(env_config.mongo, default_table=env_config.database.default_table), env_config.mongo.database
    if env_config.ingest.sink == 'kafka':
        raise ConfigError("Re-cleaning needs CHESS_SINK=postgres or CHESS_SINK=mongo")
    from pgnloader.storage.postgres_sink import PostgresSink
    sink = PostgresSink(env_config.database.connection_uri, schema=env_config.database.database_name,
                        max_connections=1)
    return sink, env_config.database.database_name


def reclean_moves(tables, env_config=None):
    """Re-apply move cleaning to rows stored by an older loader."""
    env_config = env_config or EnvironmentConfig()
    sink, namespace = open_sink(env_config)
    total = 0
    with sink:
        for table in tables:
            print(f"🔍 Re-cleaning moves in {namespace}.{table}")
            updated = sink.reclean_moves(table)
            print(f"✅ {table}: {updated:,} rows updated")
            total += updated
    return total


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Normalize the moves column of stored games.")
    parser.add_argument('tables', nargs='+', help="Tables (or MongoDB collections) to update")
    args = parser.parse_args()

    bad = [t for t in args.tables if not TABLE_NAME_PATTERN.match(t)]
    if bad:
        print(f"❌ Invalid table names: {', '.join(bad)}")
        sys.exit(1)

    try:
        total = reclean_moves(args.tables)
    except (ConfigError, StorageError) as e:
        print(f"\n❌ {e}")
        sys.exit(1)
    print(f"\nDocuments updated successfully: {total:,}")
