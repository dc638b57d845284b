# app/services/identifier_service.py
"""
Human-readable identifiers of the form <KIND>_<SEQ>_<YYMMDD>.

The per-(kind, day) counter lives in MongoDB so every service instance draws
from the same sequence, and the unique index on the target collection decides
the final winner: a DuplicateKeyError moves on to the next sequence value.
"""
from datetime import date, datetime
from typing import Any, Dict, Optional, Union

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.config import COLLECTION_SEQUENCES, ID_MAX_ATTEMPTS, ID_SEQUENCE_WIDTH
from app.core.exceptions import GenerationExhausted
from app.db.mongodb import get_db
from app.utiles.custom_helpers import _now_utc
from app.utiles.logger import get_logger

logger = get_logger(__name__)

KIND_VEHICLE = "VEH"
KIND_DEPLOYMENT = "DEP"
KIND_MAINTENANCE = "MAINT"


def _day_stamp(day: Union[date, datetime]) -> str:
    return day.strftime("%y%m%d")


def format_id(kind: str, seq: int, day: Union[date, datetime]) -> str:
    return f"{kind}_{seq:0{ID_SEQUENCE_WIDTH}d}_{_day_stamp(day)}"


async def next_sequence(kind: str, day: Union[date, datetime]) -> int:
    """Atomically advance and return the stored counter for (kind, day)."""
    doc = await get_db()[COLLECTION_SEQUENCES].find_one_and_update(
        {"_id": f"{kind}:{_day_stamp(day)}"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(doc["seq"])


async def generate_id(kind: str, day: Optional[Union[date, datetime]] = None) -> str:
    day = day or _now_utc()
    return format_id(kind, await next_sequence(kind, day), day)


async def insert_with_generated_id(
    collection: str,
    id_field: str,
    kind: str,
    doc: Dict[str, Any],
    day: Optional[Union[date, datetime]] = None,
    max_attempts: int = ID_MAX_ATTEMPTS,
) -> str:
    """
    Mint an id for `doc`, insert it into `collection` and return the id.
    Retries with the next sequence value on an id collision and gives up
    with GenerationExhausted after `max_attempts`.
    """
    day = day or _now_utc()
    coll = get_db()[collection]

    for attempt in range(1, max_attempts + 1):
        candidate = await generate_id(kind, day)
        try:
            await coll.insert_one({**doc, id_field: candidate})
            logger.info("Minted %s=%s on attempt %s", id_field, candidate, attempt)
            return candidate
        except DuplicateKeyError:
            # Another unique index (e.g. registration number) is not ours to retry
            if not await coll.find_one({id_field: candidate}, {"_id": 1}):
                raise
            logger.warning("Id collision on %s=%s (attempt %s/%s)", id_field, candidate, attempt, max_attempts)

    logger.error("Identifier generation exhausted for kind=%s after %s attempts", kind, max_attempts)
    raise GenerationExhausted(kind, max_attempts)
