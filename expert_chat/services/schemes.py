import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import anyio

from .storage import get_conn, like_pattern

logger = logging.getLogger(__name__)

MAX_SCHEMES = 5


def _targets(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        values = json.loads(raw)
    except ValueError:
        return [raw]
    return [str(v) for v in values] if isinstance(values, list) else []


def _targets_match(targets: List[str], wanted: Optional[str]) -> bool:
    # an empty target list means the scheme is open to everyone
    if not wanted or not targets:
        return True
    wanted = wanted.strip().lower()
    return any(wanted in t.lower() or t.lower() in wanted for t in targets)


class SchemeStore:
    """Read access to the `govt_schemes` table."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def search(self, query: str, state: Optional[str] = None, crop: Optional[str] = None,
               limit: int = MAX_SCHEMES) -> List[Dict[str, Any]]:
        pattern = like_pattern(query)
        sql = (
            "SELECT * FROM govt_schemes WHERE is_active = 1 AND ("
            "scheme_name LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\' OR benefits LIKE ? ESCAPE '\\'"
            ") ORDER BY id"
        )
        conn = get_conn(self.db_path)
        try:
            rows = conn.execute(sql, (pattern, pattern, pattern)).fetchall()
        finally:
            conn.close()

        out: List[Dict[str, Any]] = []
        for r in rows:
            row = dict(r)
            row["target_states"] = _targets(row.get("target_states"))
            row["target_crops"] = _targets(row.get("target_crops"))
            if _targets_match(row["target_states"], state) and _targets_match(row["target_crops"], crop):
                out.append(row)
            if len(out) >= limit:
                break
        logger.debug("[SchemeStore.search] query=%s state=%s crop=%s matched=%d", query, state, crop, len(out))
        return out

    async def asearch(self, query: str, state: Optional[str] = None, crop: Optional[str] = None,
                      limit: int = MAX_SCHEMES) -> List[Dict[str, Any]]:
        return await anyio.to_thread.run_sync(lambda: self.search(query, state, crop, limit))


def format_scheme_report(query: str, rows: List[Dict[str, Any]], common_schemes: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    if not rows:
        return {
            "message": f'No specific schemes found for "{query}". Here are major schemes available to farmers:',
            "common_schemes": [dict(s) for s in common_schemes],
            "suggestion": "Visit your local Krishi Vigyan Kendra (KVK) or agriculture office for state-specific schemes",
        }

    schemes = []
    for s in rows:
        schemes.append({
            "name": s.get("scheme_name"),
            "ministry": s.get("ministry"),
            "description": s.get("description"),
            "benefits": s.get("benefits"),
            "eligibility": s.get("eligibility_criteria"),
            "how_to_apply": f"Apply at: {s['application_url']}" if s.get("application_url") else "Contact local agriculture office",
            "valid_until": s.get("valid_until"),
        })

    return {
        "query": query,
        "schemes_found": len(schemes),
        "schemes": schemes,
        "tip": "Carry Aadhaar card, land records, and bank passbook when applying for any scheme",
    }
