"""PostgreSQL connectivity for the document store backend.

One pool per process, shared by request threads. Credentials come from AWS
Secrets Manager when ``DB_SECRET_ARN`` is set, otherwise from ``DB_*``
environment variables.

Every unit of work runs in its own transaction through
:meth:`ConnectionManager.transaction`: committed when the block exits
cleanly, rolled back otherwise, so a failed statement never hands an
aborted connection back to the pool.
"""
import dataclasses
import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the documents database."""
    host: str
    port: int = 5432
    database: str = "recordbook"
    username: str = ""
    password: str = ""
    min_connections: int = 2
    max_connections: int = 10
    connect_timeout: int = 10
    statement_timeout_ms: int = 5000
    ssl_mode: str = "require"
    application_name: str = "recordbook-audit"

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``psycopg2.connect``."""
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.username,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
            "sslmode": self.ssl_mode,
            "application_name": self.application_name,
            # Audit reads are short; a stuck query must not pin a pooled connection
            "options": f"-c statement_timeout={self.statement_timeout_ms}",
        }

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Create config from environment variables.

        Environment variables:
            DB_HOST, DB_PORT, DB_NAME (default recordbook), DB_USER,
            DB_PASSWORD, DB_MIN_CONN, DB_MAX_CONN, DB_SSL_MODE,
            DB_STATEMENT_TIMEOUT_MS (default 5000)
        """
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "recordbook"),
            username=os.getenv("DB_USER", ""),
            password=os.getenv("DB_PASSWORD", ""),
            min_connections=int(os.getenv("DB_MIN_CONN", "2")),
            max_connections=int(os.getenv("DB_MAX_CONN", "10")),
            statement_timeout_ms=int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000")),
            ssl_mode=os.getenv("DB_SSL_MODE", "require"),
        )

    @classmethod
    def from_secrets_manager(cls, secret_arn: str, region: str = "us-east-1") -> "DatabaseConfig":
        """Overlay credentials from an AWS Secrets Manager secret on the env config.

        The secret holds the usual RDS keys (host, port, dbname, username,
        password); missing keys keep their environment values.
        """
        import boto3

        try:
            client = boto3.client("secretsmanager", region_name=region)
            response = client.get_secret_value(SecretId=secret_arn)
            secret = json.loads(response["SecretString"])
        except Exception as e:
            logger.error(
                "SECRETS_MANAGER_LOAD_FAILED",
                extra={"error": str(e), "secret_arn": secret_arn}
            )
            raise

        base = cls.from_env()
        return dataclasses.replace(
            base,
            host=secret.get("host", base.host),
            port=int(secret.get("port", base.port)),
            database=secret.get("dbname", base.database),
            username=secret.get("username", base.username),
            password=secret.get("password", base.password),
        )

    @classmethod
    def load(cls) -> "DatabaseConfig":
        """Secrets Manager config when DB_SECRET_ARN is set, env config otherwise."""
        secret_arn = os.getenv("DB_SECRET_ARN")
        if secret_arn:
            return cls.from_secrets_manager(secret_arn, os.getenv("AWS_REGION", "us-east-1"))
        return cls.from_env()


class ConnectionManager:
    """Lazily created psycopg2 ThreadedConnectionPool."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool = None
        self._lock = threading.Lock()

        logger.info(
            "CONNECTION_MANAGER_CREATED",
            extra={
                "host": config.host,
                "database": config.database,
                "max_connections": config.max_connections,
            }
        )

    @property
    def initialized(self) -> bool:
        return self._pool is not None

    def initialize(self) -> None:
        """Open the pool. Safe to call from several threads."""
        with self._lock:
            if self._pool is not None:
                return

            from psycopg2 import pool

            try:
                self._pool = pool.ThreadedConnectionPool(
                    self.config.min_connections,
                    self.config.max_connections,
                    **self.config.connect_kwargs()
                )
            except Exception as e:
                logger.error("CONNECTION_POOL_INIT_FAILED", extra={"error": str(e)})
                raise

        logger.info(
            "CONNECTION_POOL_INITIALIZED",
            extra={"host": self.config.host, "database": self.config.database}
        )

    @contextmanager
    def get_connection(self):
        """Borrow a connection; it is always returned to the pool."""
        if not self.initialized:
            self.initialize()

        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Cursor inside one transaction, committed on success.

        Usage:
            with manager.transaction() as cur:
                cur.execute("SELECT 1")
        """
        with self.get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def health_check(self, table_name: Optional[str] = None) -> Dict[str, Any]:
        """Check connectivity and, if given, that the documents table exists."""
        if not self.initialized:
            return {"status": "not_initialized", "healthy": False}

        try:
            with self.transaction() as cur:
                if table_name is None:
                    cur.execute("SELECT 1")
                else:
                    cur.execute("SELECT to_regclass(%s)", (table_name,))
                row = cur.fetchone()
        except Exception as e:
            logger.error("DATABASE_HEALTH_CHECK_FAILED", extra={"error": str(e)})
            return {"status": "error", "healthy": False, "error": str(e)}

        if table_name is not None and (row is None or row[0] is None):
            return {"status": "schema_missing", "healthy": False, "table_name": table_name}

        return {
            "status": "connected",
            "healthy": True,
            "host": self.config.host,
            "database": self.config.database,
        }

    def close(self) -> None:
        """Close every pooled connection."""
        with self._lock:
            if self._pool is not None:
                self._pool.closeall()
                logger.info("CONNECTION_POOL_CLOSED")
            self._pool = None


_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Get or create the process-wide connection manager."""
    global _connection_manager

    if _connection_manager is None:
        _connection_manager = ConnectionManager(DatabaseConfig.load())

    return _connection_manager
