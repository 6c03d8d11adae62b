import logging
from typing import Any, Dict, List, Optional

import anyio
import pandas as pd

from .storage import get_conn, like_pattern

logger = logging.getLogger(__name__)

MAX_PRICE_ROWS = 10
EXAMPLE_COMMODITIES = ["Wheat", "Rice", "Soybean", "Cotton", "Onion"]


class PriceStore:
    """Read access to the `market_prices` table."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def query(self, commodity: str, state: Optional[str] = None, mandi: Optional[str] = None,
              limit: int = MAX_PRICE_ROWS) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM market_prices WHERE commodity LIKE ? ESCAPE '\\'"
        params: List[Any] = [like_pattern(commodity)]
        if state:
            sql += " AND mandi_state LIKE ? ESCAPE '\\'"
            params.append(like_pattern(state))
        if mandi:
            sql += " AND mandi_name LIKE ? ESCAPE '\\'"
            params.append(like_pattern(mandi))
        sql += " ORDER BY price_date DESC, id DESC LIMIT ?"
        params.append(limit)

        conn = get_conn(self.db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        logger.debug("[PriceStore.query] commodity=%s state=%s mandi=%s rows=%d", commodity, state, mandi, len(rows))
        return [dict(r) for r in rows]

    async def aquery(self, commodity: str, state: Optional[str] = None, mandi: Optional[str] = None,
                     limit: int = MAX_PRICE_ROWS) -> List[Dict[str, Any]]:
        return await anyio.to_thread.run_sync(lambda: self.query(commodity, state, mandi, limit))


def _rupees(value: Any) -> str:
    amount = float(value)
    if amount.is_integer():
        return f"₹{int(amount)}"
    return f"₹{round(amount, 2)}"


def summarize_prices(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Average modal price and date span over the returned rows (missing modal counts as 0)."""
    df = pd.DataFrame(rows)
    modal = pd.to_numeric(df["modal_price"], errors="coerce").fillna(0)
    dates = df["price_date"].astype(str)
    return {
        "average_modal_price": f"₹{int(round(modal.mean()))}/quintal",
        "mandis_checked": int(len(df)),
        "date_range": f"{dates.min()} to {dates.max()}",
    }


def format_price_report(commodity: str, rows: List[Dict[str, Any]], state: Optional[str] = None) -> Dict[str, Any]:
    if not rows:
        where = f" in {state}" if state else ""
        return {
            "message": f"No recent price data found for {commodity}{where}. You may want to check local mandi directly or try nearby states.",
            "suggestion": "Try searching for common crops like " + ", ".join(EXAMPLE_COMMODITIES[:-1]) + f", or {EXAMPLE_COMMODITIES[-1]}",
        }

    prices = []
    for p in rows:
        unit = p.get("price_unit") or "quintal"
        prices.append({
            "mandi": p.get("mandi_name"),
            "state": p.get("mandi_state"),
            "district": p.get("mandi_district"),
            "modal_price": f"{_rupees(p.get('modal_price') or 0)}/{unit}",
            "min_price": _rupees(p["min_price"]) if p.get("min_price") else None,
            "max_price": _rupees(p["max_price"]) if p.get("max_price") else None,
            "date": p.get("price_date"),
        })

    return {
        "commodity": commodity,
        "prices": prices,
        "summary": summarize_prices(rows),
        "tip": "Compare prices across multiple mandis before selling. Transportation cost should also be considered.",
    }
