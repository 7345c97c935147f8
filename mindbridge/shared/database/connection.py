"""PostgreSQL access for the crisis pipeline stores.

One ThreadedConnectionPool per service process, shared by the analysis
log, crisis alert and notification repositories. Sessions are pinned
to UTC so TIMESTAMPTZ values come back in the same zone they were
written in. Production credentials live in AWS Secrets Manager; local
development reads DB_* variables.
"""
import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator

import boto3
from psycopg2 import pool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the mindbridge database."""
    host: str
    port: int = 5432
    database: str = "mindbridge"
    username: str = ""
    password: str = ""
    min_connections: int = 2
    max_connections: int = 10
    connect_timeout: int = 10
    ssl_mode: str = "require"
    application_name: str = "mindbridge"

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Read DB_* environment variables.

        Environment variables:
            DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD
            DB_MIN_CONN / DB_MAX_CONN: Pool bounds (default 2 / 10)
            DB_SSL_MODE: libpq sslmode (default require)
            DB_APPLICATION_NAME: Shown in pg_stat_activity (default mindbridge)
        """
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "mindbridge"),
            username=os.getenv("DB_USER", ""),
            password=os.getenv("DB_PASSWORD", ""),
            min_connections=int(os.getenv("DB_MIN_CONN", "2")),
            max_connections=int(os.getenv("DB_MAX_CONN", "10")),
            ssl_mode=os.getenv("DB_SSL_MODE", "require"),
            application_name=os.getenv("DB_APPLICATION_NAME", "mindbridge"),
        )

    @classmethod
    def from_secrets_manager(cls, secret_arn: str, region: str = "us-east-1") -> "DatabaseConfig":
        """Overlay credentials from a Secrets Manager secret on from_env().

        The secret uses the RDS layout (host, port, dbname, username,
        password); pool and SSL settings still come from the environment.

        Raises:
            Exception: Whatever boto3 raised; the service must not start
                against the wrong database
        """
        try:
            client = boto3.client("secretsmanager", region_name=region)
            secret = json.loads(client.get_secret_value(SecretId=secret_arn)["SecretString"])
        except Exception as e:
            logger.error(
                "DB_SECRET_LOAD_FAILED",
                extra={"secret_arn": secret_arn, "region": region, "error": str(e)}
            )
            raise

        base = cls.from_env()
        return replace(
            base,
            host=secret.get("host", base.host),
            port=int(secret.get("port", base.port)),
            database=secret.get("dbname", base.database),
            username=secret.get("username", ""),
            password=secret.get("password", ""),
        )

    def pool_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for psycopg2's pool constructor."""
        return {
            "minconn": self.min_connections,
            "maxconn": self.max_connections,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.username,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
            "sslmode": self.ssl_mode,
            "application_name": self.application_name,
            "options": "-c timezone=UTC",
        }


class ConnectionManager:
    """Owns the pool; hands out connections and transactional cursors."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool = None
        self._initialized = False

    def initialize(self) -> None:
        """Open the pool. Idempotent; called once by the bootstrap."""
        if self._initialized:
            return

        try:
            self._pool = pool.ThreadedConnectionPool(**self.config.pool_kwargs())
        except Exception as e:
            logger.error(
                "DB_POOL_INIT_FAILED",
                extra={"host": self.config.host, "database": self.config.database, "error": str(e)}
            )
            raise

        self._initialized = True
        logger.info(
            "DB_POOL_READY",
            extra={
                "host": self.config.host,
                "database": self.config.database,
                "max_connections": self.config.max_connections,
            }
        )

    @contextmanager
    def get_connection(self) -> Iterator[Any]:
        """Borrow a pooled connection; it is always returned."""
        if not self._initialized:
            self.initialize()

        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Yield a cursor inside one transaction.

        Commits on clean exit, rolls back and re-raises on any exception.
        Advisory locks taken with pg_advisory_xact_lock are released at
        the end of this block.
        """
        with self.get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def health_check(self) -> Dict[str, Any]:
        """Readiness check payload."""
        if not self._initialized:
            return {"status": "not_initialized", "healthy": False}

        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
        except Exception as e:
            logger.error("DB_HEALTH_CHECK_FAILED", extra={"error": str(e)})
            return {"status": "error", "healthy": False, "error": str(e)}

        return {
            "status": "connected",
            "healthy": True,
            "database": self.config.database,
            "max_connections": self.config.max_connections,
        }

    def close(self) -> None:
        """Close every pooled connection. Called on shutdown."""
        if self._pool is not None:
            self._pool.closeall()
            logger.info("DB_POOL_CLOSED")

        self._pool = None
        self._initialized = False
