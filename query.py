"""
Generic list query for collection endpoints.

A flat query string such as ``?tuition[lte]=1000&careers[in]=UI/UX&select=name,tuition&sort=-tuition&page=2&limit=5``
is turned into a MongoDB filter, projection, sort and skip/limit window, and the
result is wrapped in the ``{success, count, pagination, data}`` envelope.

Filters are parsed per key: ``field=value`` is an equality match and
``field[op]=value`` with ``op`` in gt/gte/lt/lte/in becomes ``{"$op": value}``.
Values are coerced to the type the schema declares for the field, and keys
that are not schema fields are ignored.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Type, Union, get_args, get_origin

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import HIDDEN_FIELDS, sanitize

CONTROL_KEYS = ("select", "sort", "page", "limit")
OPERATORS = ("gt", "gte", "lt", "lte", "in")
DEFAULT_SORT = [("createdAt", DESCENDING)]
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 15
# Keeps skip and limit inside BSON int64.
MAX_PAGE_VALUE = 2 ** 31 - 1

_BRACKETED = re.compile(r"^([\w.]+)\[(\w+)\]$")
_LEADING_INT = re.compile(r"^\s*[+-]?\d+")

QueryValue = Union[str, List[str]]


class Populate(BaseModel):
    """Relation expansion applied to every document of a result page.

    A forward relation (``foreign_field`` unset) replaces the id stored in
    ``path`` with the referenced document. A reverse relation collects the
    documents of ``collection`` whose ``foreign_field`` holds this document's id
    into a list under ``path``.
    """

    path: str
    collection: str
    select: Optional[List[str]] = None
    foreign_field: Optional[str] = None


def flatten_query(params) -> Dict[str, QueryValue]:
    """Collapse a starlette QueryParams multi-dict; repeated keys become lists."""
    out: Dict[str, QueryValue] = {}
    for key in params.keys():
        values = params.getlist(key)
        out[key] = values if len(values) > 1 else values[0]
    return out


def _unwrap(annotation: Any) -> Any:
    # Optional[X] -> X
    if get_origin(annotation) is Union:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _field_type(model: Type[BaseModel], field: str) -> Any:
    root, _, rest = field.partition(".")
    info = model.model_fields.get(root)
    if info is None:
        return None
    annotation = _unwrap(info.annotation)
    if rest:
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            return _field_type(annotation, rest)
        return None
    return annotation


def coerce(value: str, annotation: Any) -> Any:
    """Cast a query-string value to the field's declared type, or leave it as is."""
    annotation = _unwrap(annotation)
    if get_origin(annotation) in (list, List):
        args = get_args(annotation)
        return coerce(value, args[0]) if args else value
    if get_origin(annotation) is Literal:
        return value
    try:
        if annotation is bool:
            return value.lower() in ("true", "1", "yes")
        if annotation is int:
            return int(value)
        if annotation is float:
            number = float(value)
            return int(number) if number.is_integer() else number
        if annotation is datetime:
            return datetime.fromisoformat(value)
    except ValueError:
        return value
    return value


def build_filter(params: Mapping[str, QueryValue], model: Type[BaseModel]) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    for key, raw in params.items():
        if key in CONTROL_KEYS:
            continue
        match = _BRACKETED.match(key)
        field, op = (match.group(1), match.group(2)) if match else (key, None)
        if field in HIDDEN_FIELDS:
            continue
        if op is not None and op not in OPERATORS:
            continue
        if field in ("id", "_id"):
            field, annotation = "_id", ObjectId
        else:
            annotation = _field_type(model, field)
            if annotation is None:
                continue

        values = raw if isinstance(raw, list) else [raw]
        if annotation is ObjectId:
            values = [ObjectId(v) if ObjectId.is_valid(v) else v for v in values]
        else:
            values = [coerce(v, annotation) for v in values]

        if op == "in":
            condition: Any = {"$in": values}
        elif op is not None:
            condition = {f"${op}": values[-1]}
        elif len(values) > 1:
            condition = {"$in": values}
        else:
            condition = values[0]

        if isinstance(condition, dict) and isinstance(filt.get(field), dict):
            filt[field].update(condition)
        else:
            filt[field] = condition
    return filt


def _split(value: QueryValue) -> List[str]:
    joined = ",".join(value) if isinstance(value, list) else value
    return [part.strip() for part in joined.split(",") if part.strip()]


def build_projection(select: Optional[QueryValue]) -> Optional[Dict[str, int]]:
    if not select:
        return None
    fields = _split(select)
    return {f: 1 for f in fields} or None


def build_sort(sort: Optional[QueryValue]) -> List[Tuple[str, int]]:
    if not sort:
        return list(DEFAULT_SORT)
    keys = []
    for part in _split(sort):
        direction = DESCENDING if part.startswith("-") else ASCENDING
        field = part.lstrip("+-")
        if field and field not in HIDDEN_FIELDS:
            keys.append((field, direction))
    return keys or list(DEFAULT_SORT)


def parse_positive_int(value: Optional[QueryValue], default: int) -> int:
    """Leading-integer parse that falls back to ``default`` for anything below 1.

    Values above ``MAX_PAGE_VALUE`` are clamped to it.
    """
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None:
        return default
    match = _LEADING_INT.match(str(value))
    if not match:
        return default
    number = int(match.group(0))
    if number < 1:
        return default
    return min(number, MAX_PAGE_VALUE)


def compute_pagination(page: int, limit: int, total: int) -> Dict[str, Dict[str, int]]:
    start_index = (page - 1) * limit
    end_index = page * limit
    pagination: Dict[str, Dict[str, int]] = {}
    if end_index < total:
        pagination["next"] = {"page": page + 1, "limit": limit}
    if start_index > 0:
        pagination["prev"] = {"page": page - 1, "limit": limit}
    return pagination


def populate(db: Database, docs: List[Dict], relation: Populate) -> List[Dict]:
    if not docs:
        return docs
    projection = {f: 1 for f in relation.select} if relation.select else None

    if relation.foreign_field:
        if projection:
            projection[relation.foreign_field] = 1
        ids = [str(d["_id"]) for d in docs]
        related: Dict[str, List[Dict]] = {i: [] for i in ids}
        for child in db[relation.collection].find({relation.foreign_field: {"$in": ids}}, projection):
            related.setdefault(str(child.get(relation.foreign_field)), []).append(child)
        for d in docs:
            d[relation.path] = related.get(str(d["_id"]), [])
        return docs

    refs = {d.get(relation.path) for d in docs if ObjectId.is_valid(str(d.get(relation.path)))}
    found = {
        str(r["_id"]): r
        for r in db[relation.collection].find({"_id": {"$in": [ObjectId(r) for r in refs]}}, projection)
    }
    for d in docs:
        ref = d.get(relation.path)
        if ref is not None:
            d[relation.path] = found.get(str(ref))
    return docs


def advanced_results(
    db: Database,
    collection_name: str,
    model: Type[BaseModel],
    params: Mapping[str, QueryValue],
    expand: Optional[Populate] = None,
) -> Dict[str, Any]:
    """Run a filtered, projected, sorted and paginated listing of a collection."""
    filt = build_filter(params, model)
    projection = build_projection(params.get("select"))
    sort = build_sort(params.get("sort"))

    page = parse_positive_int(params.get("page"), DEFAULT_PAGE)
    limit = parse_positive_int(params.get("limit"), DEFAULT_LIMIT)
    total = db[collection_name].count_documents(filt)

    cursor = db[collection_name].find(filt, projection).sort(sort).skip((page - 1) * limit).limit(limit)
    docs = list(cursor)
    if expand is not None:
        docs = populate(db, docs, expand)

    return {
        "success": True,
        "count": len(docs),
        "pagination": compute_pagination(page, limit, total),
        "data": [sanitize(d) for d in docs],
    }
