import os
import uuid
import logging
from datetime import datetime, date

import psycopg2
import psycopg2.extras
from psycopg2 import Error
from psycopg2.pool import ThreadedConnectionPool
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DB_POOL_MIN = int(os.getenv("DB_POOL_MIN", "1"))
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "20"))

# Global connection pool
db_pool = None

# API field name -> travel_data column
TRAVEL_COLUMNS = {
    "sessionId": "session_id",
    "date": "date",
    "voucher": "voucher",
    "reference": "reference",
    "narration": "narration",
    "debit": "debit",
    "credit": "credit",
    "balance": "balance",
    "customerName": "customer_name",
    "route": "route",
    "pnr": "pnr",
    "flyingDate": "flying_date",
    "flyingStatus": "flying_status",
    "customerRate": "customer_rate",
    "companyRate": "company_rate",
    "profit": "profit",
    "bookingStatus": "booking_status",
    "paymentStatus": "payment_status",
}

# Fields a reviewer may change after upload
UPDATABLE_FIELDS = {
    "reference", "narration", "customerName", "route", "pnr", "flyingDate",
    "flyingStatus", "customerRate", "companyRate", "profit",
    "bookingStatus", "paymentStatus",
}

_COLUMN_TO_FIELD = {col: fld for fld, col in TRAVEL_COLUMNS.items()}


def init_connection_pool():
    """Initialize the database connection pool."""
    global db_pool
    if db_pool is None:
        try:
            url = os.getenv("DATABASE_URL")
            if not url:
                logger.error("DATABASE_URL not found in environment variables.")
                return None

            db_pool = ThreadedConnectionPool(DB_POOL_MIN, DB_POOL_MAX, url)
            logger.info("Database connection pool created (%d-%d).", DB_POOL_MIN, DB_POOL_MAX)
        except Error as e:
            logger.error("Error creating connection pool: %s", e)
            db_pool = None


def get_db_connection():
    """Get a connection from the pool."""
    global db_pool
    if db_pool is None:
        init_connection_pool()

    try:
        if db_pool:
            return db_pool.getconn()
        return None
    except Error as e:
        logger.error("Error getting connection from pool: %s", e)
        return None


def return_db_connection(connection):
    """Return a connection to the pool."""
    global db_pool
    if db_pool and connection:
        db_pool.putconn(connection)


def _to_api(record):
    """Convert a travel_data / upload_sessions row to the camelCase API shape."""
    out = {}
    for key, value in record.items():
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        out[_COLUMN_TO_FIELD.get(key, _snake_to_camel(key))] = value
    return out


def _snake_to_camel(name):
    head, *rest = name.split("_")
    return head + "".join(p.title() for p in rest)


def init_db():
    """Create the upload_sessions and travel_data tables if they don't exist."""
    connection = get_db_connection()
    if connection:
        try:
            cursor = connection.cursor()
            cursor.execute("""
            CREATE TABLE IF NOT EXISTS upload_sessions (
                id VARCHAR(64) PRIMARY KEY,
                filename VARCHAR(255) NOT NULL,
                opening_balance JSONB,
                total_records VARCHAR(32),
                processed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """)
            cursor.execute("""
            CREATE TABLE IF NOT EXISTS travel_data (
                id VARCHAR(64) PRIMARY KEY,
                session_id VARCHAR(64) REFERENCES upload_sessions(id) ON DELETE CASCADE,
                date VARCHAR(32) NOT NULL,
                voucher VARCHAR(128) NOT NULL,
                reference TEXT,
                narration TEXT,
                debit DOUBLE PRECISION,
                credit DOUBLE PRECISION,
                balance DOUBLE PRECISION,
                customer_name TEXT,
                route VARCHAR(64),
                pnr VARCHAR(32),
                flying_date VARCHAR(32),
                flying_status VARCHAR(32),
                customer_rate DOUBLE PRECISION,
                company_rate DOUBLE PRECISION,
                profit DOUBLE PRECISION,
                booking_status VARCHAR(32) NOT NULL DEFAULT 'Pending',
                payment_status VARCHAR(32) NOT NULL DEFAULT 'Pending',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """)
            connection.commit()
            logger.info("Database initialized successfully.")
        except Error as e:
            logger.error("Error initializing database: %s", e)
        finally:
            return_db_connection(connection)
    else:
        logger.error("Failed to connect to database during initialization.")


def create_upload_session(filename, opening_balance=None, total_records=0):
    """Insert an upload session row; returns it as a dict, or None on failure."""
    connection = get_db_connection()
    if connection:
        try:
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            query = """
            INSERT INTO upload_sessions (id, filename, opening_balance, total_records, processed_at)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id, filename, opening_balance, total_records, processed_at
            """
            balance = psycopg2.extras.Json(opening_balance) if opening_balance else None
            cursor.execute(query, (uuid.uuid4().hex, filename, balance,
                                   str(total_records), datetime.now()))
            row = cursor.fetchone()
            connection.commit()
            logger.info("Upload session %s created for '%s'.", row["id"], filename)
            return _to_api(row)
        except Error as e:
            connection.rollback()
            logger.error("Error creating upload session for '%s': %s", filename, e)
            return None
        finally:
            return_db_connection(connection)
    return None


def create_travel_data_batch(session_id, entries):
    """Batch-insert parsed entries (camelCase dicts) for a session.

    Returns the number of rows written, or None on failure.
    """
    if not entries:
        return 0
    connection = get_db_connection()
    if connection:
        try:
            cursor = connection.cursor()
            fields = [f for f in TRAVEL_COLUMNS if f != "sessionId"]
            columns = ["id", "session_id"] + [TRAVEL_COLUMNS[f] for f in fields]
            values = [
                (uuid.uuid4().hex, session_id) + tuple(entry.get(f) for f in fields)
                for entry in entries
            ]
            query = f"INSERT INTO travel_data ({', '.join(columns)}) VALUES %s"
            psycopg2.extras.execute_values(cursor, query, values, page_size=500)
            connection.commit()
            logger.info("Saved %d travel rows for session %s.", len(values), session_id)
            return len(values)
        except Error as e:
            connection.rollback()
            logger.error("Error creating batch travel data for %s: %s", session_id, e)
            return None
        finally:
            return_db_connection(connection)
    return None


def get_travel_data_by_session(session_id):
    """Retrieve all travel rows of a session, newest first."""
    connection = get_db_connection()
    if connection:
        try:
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            query = "SELECT * FROM travel_data WHERE session_id = %s ORDER BY created_at DESC"
            cursor.execute(query, (session_id,))
            return [_to_api(r) for r in cursor.fetchall()]
        except Error as e:
            logger.error("Error getting travel data for session %s: %s", session_id, e)
            return None
        finally:
            return_db_connection(connection)
    return None


def update_travel_data(record_id, updates):
    """Apply a partial update; unknown fields are ignored. Returns the updated row."""
    changes = {TRAVEL_COLUMNS[k]: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
    if not changes:
        return None
    connection = get_db_connection()
    if connection:
        try:
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            assignments = ", ".join(f"{col} = %s" for col in changes)
            query = f"UPDATE travel_data SET {assignments} WHERE id = %s RETURNING *"
            cursor.execute(query, tuple(changes.values()) + (record_id,))
            row = cursor.fetchone()
            connection.commit()
            return _to_api(row) if row else None
        except Error as e:
            connection.rollback()
            logger.error("Error updating travel data %s: %s", record_id, e)
            return None
        finally:
            return_db_connection(connection)
    return None


def delete_travel_data(record_id):
    """Delete a travel row by ID."""
    connection = get_db_connection()
    if connection:
        try:
            cursor = connection.cursor()
            cursor.execute("DELETE FROM travel_data WHERE id = %s", (record_id,))
            connection.commit()
            return cursor.rowcount > 0
        except Error as e:
            connection.rollback()
            logger.error("Error deleting travel data %s: %s", record_id, e)
            return False
        finally:
            return_db_connection(connection)
    return False


def get_upload_session(session_id):
    """Retrieve a single upload session, or None."""
    connection = get_db_connection()
    if connection:
        try:
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            cursor.execute("SELECT * FROM upload_sessions WHERE id = %s", (session_id,))
            row = cursor.fetchone()
            return _to_api(row) if row else None
        except Error as e:
            logger.error("Error fetching upload session %s: %s", session_id, e)
            return None
        finally:
            return_db_connection(connection)
    return None


def get_recent_upload_sessions(limit=10):
    """Retrieve the most recent upload sessions."""
    connection = get_db_connection()
    if connection:
        try:
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            query = "SELECT * FROM upload_sessions ORDER BY processed_at DESC LIMIT %s"
            cursor.execute(query, (limit,))
            return [_to_api(r) for r in cursor.fetchall()]
        except Error as e:
            logger.error("Error fetching upload sessions: %s", e)
            return None
        finally:
            return_db_connection(connection)
    return None
