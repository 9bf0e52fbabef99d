"""Database utilities and connection management - PostgreSQL only"""

from flask import g
import config
import psycopg2
import psycopg2.extras
from core import get_logger, ExternalServiceError

logger = get_logger(__name__)


class _PgAdapter:
    """
    Thin adapter over a psycopg2 connection so callers can write
    db.execute(...).fetchone()/fetchall() with ``?`` placeholders.
    """

    def __init__(self, conn):
        self._conn = conn

    def _convert_placeholders(self, query: str):
        # Convert ? placeholders to psycopg2 (%s)
        return query.replace("?", "%s")

    def execute(self, query: str, params=()):
        cur = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        cur.execute(self._convert_placeholders(query), params or ())
        return cur

    def cursor(self):
        return self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def _connect():
    if not config.DATABASE_URL:
        raise ExternalServiceError(
            "database",
            "DATABASE_URL environment variable is required. "
            "Set it in your .env file with a PostgreSQL connection string.",
        )
    conn = psycopg2.connect(config.DATABASE_URL)
    # Store and compare every timestamp in UTC
    cur = conn.cursor()
    cur.execute("SET TIME ZONE 'UTC'")
    conn.commit()
    cur.close()
    return _PgAdapter(conn)


def get_db():
    """Get PostgreSQL database connection from Flask g object"""
    if "db" not in g:
        g.db = _connect()
    return g.db


def close_db(exc=None):
    """Close database connection"""
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db(standalone=False):
    """Initialize PostgreSQL database from schema.sql

    Args:
        standalone: If True, creates connection directly without Flask's g object
    """
    db = _connect() if standalone else get_db()

    try:
        with open(config.SCHEMA_PATH, "r", encoding="utf-8") as f:
            schema_sql = f.read()

        cur = db.cursor()
        for statement in schema_sql.split(";"):
            statement = statement.strip()
            if statement:
                cur.execute(statement)
        db.commit()
        cur.close()
        logger.info("database_schema_initialized", schema=str(config.SCHEMA_PATH))
    except Exception as e:
        db.rollback()
        logger.error("database_schema_failed", exc=e)
        raise
    finally:
        if standalone:
            db.close()
