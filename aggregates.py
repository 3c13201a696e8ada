import logging
import math
from typing import Optional

from pymongo.database import Database

from database import to_obj_id

logger = logging.getLogger(__name__)


def _average(db: Database, collection_name: str, field: str, bootcamp_id: str) -> Optional[float]:
    agg = list(db[collection_name].aggregate([
        {"$match": {"bootcamp": bootcamp_id}},
        {"$group": {"_id": "$bootcamp", "avg": {"$avg": f"${field}"}}},
    ]))
    return agg[0]["avg"] if agg else None


def _store(db: Database, bootcamp_id: str, field: str, value: Optional[float]) -> None:
    if value is None:
        update = {"$unset": {field: ""}}
    else:
        update = {"$set": {field: value}}
    db["bootcamp"].update_one({"_id": to_obj_id(bootcamp_id)}, update)


def update_average_cost(db: Database, bootcamp_id: str) -> None:
    """Mean course tuition rounded up to a multiple of 10; removed when no courses remain."""
    try:
        avg = _average(db, "course", "tuition", bootcamp_id)
        _store(db, bootcamp_id, "averageCost", math.ceil(avg / 10) * 10 if avg is not None else None)
    except Exception:
        logger.exception("Failed to update averageCost for bootcamp %s", bootcamp_id)


def update_average_rating(db: Database, bootcamp_id: str) -> None:
    """Mean review rating; removed when no reviews remain."""
    try:
        avg = _average(db, "review", "rating", bootcamp_id)
        _store(db, bootcamp_id, "averageRating", avg)
    except Exception:
        logger.exception("Failed to update averageRating for bootcamp %s", bootcamp_id)


def delete_bootcamp_cascade(db: Database, bootcamp_id: str) -> None:
    """Remove a bootcamp's courses and reviews, then the bootcamp itself."""
    courses = db["course"].delete_many({"bootcamp": bootcamp_id})
    reviews = db["review"].delete_many({"bootcamp": bootcamp_id})
    db["bootcamp"].delete_one({"_id": to_obj_id(bootcamp_id)})
    logger.info(
        "Deleted bootcamp %s with %d courses and %d reviews",
        bootcamp_id, courses.deleted_count, reviews.deleted_count,
    )
