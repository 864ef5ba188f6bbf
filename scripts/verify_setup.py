import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def print_status(step, status, message=""):
    symbol = "✅" if status else "❌"
    print(f"{symbol} {step}")
    if message:
        print(f"   {'Info' if status else 'Error'}: {message}")


def check_python_dependencies():
    required = {'chess': 'chess', 'zstandard': 'zstandard', 'kafka': 'kafka-python',
                'psycopg2': 'psycopg2-binary', 'pymongo': 'pymongo', 'dotenv': 'python-dotenv'}
    missing = []
    for module, package in required.items():
        try:
            __import__(module)
        except ImportError:
            missing.append(package)

    if missing:
        print_status("Python Dependencies", False, f"Missing: {', '.join(missing)}")
        return False
    print_status("Python Dependencies", True)
    return True


def check_root_path(env_config):
    root = env_config.ingest.root_path
    if not os.path.isdir(root):
        print_status("Root Path", False, f"{root} is not a directory")
        return False
    subdirs = [e.name for e in os.scandir(root) if e.is_dir()]
    print_status("Root Path", True, f"{root} ({len(subdirs)} datasets)")
    return True


def check_postgres(env_config):
    import psycopg2
    try:
        conn = psycopg2.connect(env_config.database.connection_uri, connect_timeout=5)
        with conn.cursor() as cur:
            cur.execute("SELECT version()")
            version = cur.fetchone()[0]
        conn.close()
        print_status("PostgreSQL Connection", True, version.split(',')[0])
        return True
    except psycopg2.Error as e:
        print_status("PostgreSQL Connection", False, str(e).strip())
        return False

def check_kafka(env_config):
    from kafka import KafkaAdminClient
    from kafka.errors import KafkaError
    try:
        admin = KafkaAdminClient(bootstrap_servers=env_config.kafka.bootstrap_servers)
        admin.list_topics()
        admin.close()
        print_status("Kafka Connection", True)
        return True
    except KafkaError as e:
        print_status("Kafka Connection", False, f"{env_config.kafka.bootstrap_servers}: {e}")
        return False


def check_mongo(env_config):
    from pymongo import MongoClient
    from pymongo.errors import PyMongoError
    try:
        client = MongoClient(env_config.mongo.uri,
                             serverSelectionTimeoutMS=env_config.mongo.server_selection_timeout_ms)
        version = client.server_info()['version']
        client.close()
        print_status("MongoDB Connection", True, f"MongoDB {version}")
        return True
    except PyMongoError as e:
        print_status("MongoDB Connection", False, str(e))
        return False


SINK_CHECKS = {
    'postgres': check_postgres,
    'kafka': check_kafka,
    'mongo': check_mongo,
}


def main():
    print("Starting Environment Verification...\n")

    if not check_python_dependencies():
        return 1

    # Imported only once python-dotenv is known to be installed
    from config.env_config import ConfigError, EnvironmentConfig

    try:
        env_config = EnvironmentConfig()
    except ConfigError as e:
        print_status("Configuration", False, str(e))
        return 1
    print_status("Configuration", True, f"profile={env_config.env}, sink={env_config.ingest.sink}")

    checks = [check_root_path(env_config), SINK_CHECKS[env_config.ingest.sink](env_config)]

    if all(checks):
        print("\n✅ All checks passed! Environment is ready.")
        return 0
    print("\n❌ Some checks failed. Please verify your environment.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
