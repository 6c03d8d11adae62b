"""
SQLite store for mandi prices and government schemes.

Tables mirror the columns the mobile app already syncs (`market_prices`,
`govt_schemes`). The store is read by the chat tools; ingestion happens
elsewhere, except for the bundled sample data seeded into an empty database
so local setups are not empty.
"""
import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .. import config

logger = logging.getLogger(__name__)

SAMPLE_PRICES_PATH = config.DATA_DIR / "sample_market_prices.json"
SAMPLE_SCHEMES_PATH = config.DATA_DIR / "sample_schemes.json"


def get_conn(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str) -> None:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_conn(db_path)
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS market_prices (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            commodity TEXT NOT NULL,
            mandi_name TEXT NOT NULL,
            mandi_state TEXT NOT NULL,
            mandi_district TEXT,
            min_price REAL,
            max_price REAL,
            modal_price REAL,
            price_unit TEXT,
            price_date TEXT NOT NULL,
            arrival_quantity REAL,
            source TEXT,
            created_at TEXT NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS govt_schemes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            scheme_name TEXT NOT NULL,
            ministry TEXT,
            description TEXT NOT NULL,
            benefits TEXT,
            eligibility_criteria TEXT,
            application_url TEXT,
            target_states TEXT,
            target_crops TEXT,
            is_active INTEGER DEFAULT 1,
            valid_from TEXT,
            valid_until TEXT,
            created_at TEXT NOT NULL
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_market_prices_date ON market_prices (price_date)")
    conn.commit()
    conn.close()


def like_pattern(text: str) -> str:
    """Build a `%text%` LIKE pattern with wildcards in `text` escaped (use with ESCAPE '\\')."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def insert_prices(db_path: str, rows: Iterable[Dict[str, Any]]) -> int:
    now = datetime.utcnow().isoformat()
    conn = get_conn(db_path)
    cur = conn.cursor()
    count = 0
    for row in rows:
        cur.execute(
            "INSERT INTO market_prices (commodity, mandi_name, mandi_state, mandi_district, min_price, max_price, "
            "modal_price, price_unit, price_date, arrival_quantity, source, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                row["commodity"],
                row["mandi_name"],
                row["mandi_state"],
                row.get("mandi_district"),
                row.get("min_price"),
                row.get("max_price"),
                row.get("modal_price"),
                row.get("price_unit"),
                row["price_date"],
                row.get("arrival_quantity"),
                row.get("source"),
                now,
            ),
        )
        count += 1
    conn.commit()
    conn.close()
    return count


def insert_schemes(db_path: str, rows: Iterable[Dict[str, Any]]) -> int:
    now = datetime.utcnow().isoformat()
    conn = get_conn(db_path)
    cur = conn.cursor()
    count = 0
    for row in rows:
        cur.execute(
            "INSERT INTO govt_schemes (scheme_name, ministry, description, benefits, eligibility_criteria, "
            "application_url, target_states, target_crops, is_active, valid_from, valid_until, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                row["scheme_name"],
                row.get("ministry"),
                row["description"],
                row.get("benefits"),
                row.get("eligibility_criteria"),
                row.get("application_url"),
                json.dumps(row.get("target_states") or []),
                json.dumps(row.get("target_crops") or []),
                1 if row.get("is_active", True) else 0,
                row.get("valid_from"),
                row.get("valid_until"),
                now,
            ),
        )
        count += 1
    conn.commit()
    conn.close()
    return count


def _table_is_empty(db_path: str, table: str) -> bool:
    conn = get_conn(db_path)
    try:
        row = conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()
    finally:
        conn.close()
    return row["n"] == 0


def seed_sample_data(db_path: str, prices_path: Optional[Path] = None, schemes_path: Optional[Path] = None) -> Dict[str, int]:
    """Load the bundled sample prices/schemes into tables that are still empty."""
    prices_path = prices_path or SAMPLE_PRICES_PATH
    schemes_path = schemes_path or SAMPLE_SCHEMES_PATH
    seeded = {"market_prices": 0, "govt_schemes": 0}
    if prices_path.exists() and _table_is_empty(db_path, "market_prices"):
        rows = json.loads(prices_path.read_text(encoding="utf-8"))
        seeded["market_prices"] = insert_prices(db_path, rows)
    if schemes_path.exists() and _table_is_empty(db_path, "govt_schemes"):
        rows = json.loads(schemes_path.read_text(encoding="utf-8"))
        seeded["govt_schemes"] = insert_schemes(db_path, rows)
    if any(seeded.values()):
        logger.info("[seed_sample_data] seeded %s into %s", seeded, db_path)
    return seeded
