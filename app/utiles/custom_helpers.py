from datetime import datetime, timezone
from uuid import uuid4
# ----------------------------
# Helpers
# ----------------------------
def _now_utc() -> datetime:
    # Naive UTC, matching what MongoDB hands back for stored dates
    return datetime.now(timezone.utc).replace(tzinfo=None)

def _to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)

def _normalize_id(s: str) -> str:
    return s.strip()

def _gen_entry_id() -> str:
    return f"hist-{uuid4().hex}"

def _gen_lock_token() -> str:
    return f"lock-{uuid4().hex}"

def _strip_mongo_id(doc):
    if doc is not None:
        doc.pop("_id", None)
    return doc
