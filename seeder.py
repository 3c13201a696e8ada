"""
Seed or wipe the database.

    python seeder.py -i data/    import users.json, bootcamps.json, courses.json, reviews.json
    python seeder.py -d          delete every user, bootcamp, course and review
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Type

from bson import ObjectId
from pydantic import BaseModel
from pymongo.database import Database
from slugify import slugify

import database
from aggregates import update_average_cost, update_average_rating
from auth import hash_password
from config import get_settings
from geocoder import Geocoder, geocode_or_fail
from logging_config import configure_logging
from schemas import Bootcamp, Course, Review, User

logger = logging.getLogger("seeder")

COLLECTIONS = ("user", "bootcamp", "course", "review")


def _load(directory: str, name: str):
    path = os.path.join(directory, f"{name}s.json")
    if not os.path.exists(path):
        return []
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def _build(raw: Dict[str, Any], model: Type[BaseModel]) -> Dict[str, Any]:
    """Validate a seed record against its schema, keeping a given hex ``_id``."""
    doc = model(**raw).model_dump(exclude_none=True)
    if ObjectId.is_valid(str(raw.get("_id"))):
        doc["_id"] = ObjectId(raw["_id"])
    return doc


def _prepare_user(raw: Dict[str, Any], geocoder: Geocoder) -> Dict[str, Any]:
    raw = dict(raw)
    raw["password_hash"] = hash_password(raw.pop("password"))
    return _build(raw, User)


def _prepare_bootcamp(raw: Dict[str, Any], geocoder: Geocoder) -> Dict[str, Any]:
    raw = dict(raw)
    raw["slug"] = slugify(raw["name"])
    address = raw.pop("address", None)
    if address:
        raw["location"] = geocode_or_fail(geocoder, address)
    return _build(raw, Bootcamp)


def _prepare_course(raw: Dict[str, Any], geocoder: Geocoder) -> Dict[str, Any]:
    return _build(raw, Course)


def _prepare_review(raw: Dict[str, Any], geocoder: Geocoder) -> Dict[str, Any]:
    return _build(raw, Review)


PREPARERS = (
    ("user", _prepare_user),
    ("bootcamp", _prepare_bootcamp),
    ("course", _prepare_course),
    ("review", _prepare_review),
)


def import_data(db: Database, directory: str, geocoder: Geocoder) -> None:
    for name, prepare in PREPARERS:
        docs: List[Dict[str, Any]] = [prepare(raw, geocoder) for raw in _load(directory, name)]
        if not docs:
            continue
        db[name].insert_many(docs)
        logger.info("Imported %d %s documents", len(docs), name)

    for b in db["bootcamp"].find({}, {"_id": 1}):
        update_average_cost(db, str(b["_id"]))
        update_average_rating(db, str(b["_id"]))


def delete_data(db: Database) -> None:
    for name in COLLECTIONS:
        res = db[name].delete_many({})
        logger.info("Deleted %d %s documents", res.deleted_count, name)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("-i", "--import", dest="directory", help="directory holding the JSON seed files")
    group.add_argument("-d", "--delete", action="store_true", help="delete all seeded collections")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings)
    db = database.get_db()
    if args.delete:
        delete_data(db)
    else:
        import_data(db, args.directory, Geocoder(settings))
    return 0


if __name__ == "__main__":
    sys.exit(main())
