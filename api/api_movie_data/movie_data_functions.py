import json
import logging
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
import redis

from movie_data_errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PRIVACY_VALUES = {"public", "private"}
MOVIE_CACHE_PREFIX = "movie_data"


def utc_now():
    """
    Return the current UTC time truncated to milliseconds, the precision MongoDB stores.

    Returns:
        datetime: Timezone-aware timestamp.
    """
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def serialize_value(value: Any):
    """
    Convert BSON-specific values into JSON-friendly ones.

    Args:
        value (Any): Value read from a document.

    Returns:
        Any: ObjectIds as hex strings, datetimes as ISO strings, containers recursively.
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {key: serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def serialize_document(document: dict | None):
    """
    Serialize a MongoDB document for a JSON response.

    The database ``_id`` is exposed as ``id`` and is the only identifier clients see.

    Args:
        document (dict | None): MongoDB document.

    Returns:
        dict: Serializable copy, empty when no document was given.
    """
    if not document:
        return {}
    serialized = {}
    for key, value in document.items():
        if key == "_id":
            serialized["id"] = str(value)
        else:
            serialized[key] = serialize_value(value)
    return serialized


def build_cache_key(prefix: str, *parts: Any):
    """
    Build a Redis cache key with a prefix and optional segments.

    Args:
        prefix (str): Root part of the key.
        *parts: Additional segments.

    Returns:
        str: Colon-separated cache key.
    """
    normalized = [MOVIE_CACHE_PREFIX, prefix]
    for part in parts:
        normalized.append(str(part) if part is not None else "")
    return ":".join(normalized)


def get_cached(redis_client: redis.Redis, cache_key: str):
    """
    Read a JSON payload from Redis.

    Args:
        redis_client (Redis): Redis client instance.
        cache_key (str): Key to read.

    Returns:
        Any | None: Decoded payload, or None on a miss or a Redis failure.
    """
    try:
        cached = redis_client.get(cache_key)
    except redis.RedisError as exc:
        logger.warning("Redis read failed for %s: %s", cache_key, exc)
        return None
    if not cached:
        return None
    try:
        return json.loads(cached)
    except json.JSONDecodeError:
        return None


def set_cached(redis_client: redis.Redis, cache_key: str, ttl_seconds: int, payload: Any):
    """
    Store a JSON payload in Redis with an expiry.

    Args:
        redis_client (Redis): Redis client instance.
        cache_key (str): Key to write.
        ttl_seconds (int): Time-to-live in seconds.
        payload (Any): JSON-serializable payload.
    """
    try:
        redis_client.setex(cache_key, ttl_seconds, json.dumps(payload))
    except redis.RedisError as exc:
        logger.warning("Redis write failed for %s: %s", cache_key, exc)


def invalidate_movie_cache(redis_client: redis.Redis):
    """
    Drop every cached movie payload after a write.

    Args:
        redis_client (Redis): Redis client instance.
    """
    try:
        for key in redis_client.scan_iter(f"{MOVIE_CACHE_PREFIX}:*"):
            redis_client.delete(key)
    except redis.RedisError as exc:
        logger.warning("Redis invalidation failed: %s", exc)


def safe_int(value, default=0):
    """
    Parse a value into an integer, tolerating strings and floats.

    Args:
        value (Any): Raw value to convert.
        default (int): Fallback value when parsing fails.

    Returns:
        int: Parsed integer or the default.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return default


def safe_float(value, default=None):
    """
    Convert arbitrary values into floats, accepting a comma decimal separator.

    Args:
        value (Any): Raw value to convert.
        default (float | None): Fallback value when parsing is unsuccessful.

    Returns:
        float | None: Parsed float or the provided default.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(str(value).strip().replace(",", "."))
    except (TypeError, ValueError, OverflowError):
        return default


def parse_limit_param(raw_value: object, default_limit: int, max_limit: int):
    """
    Sanitize limit parameters, clamping to configured bounds.

    Args:
        raw_value (Any): Limit value provided by the client.
        default_limit (int): Fallback limit when parsing fails.
        max_limit (int): Maximum allowed limit.

    Returns:
        int: Validated limit value.
    """
    limit = safe_int(raw_value, 0)
    if limit <= 0:
        return default_limit
    return min(limit, max_limit)


def parse_release_date(value: Any):
    """
    Normalize a release date to ``YYYY-MM-DD``.

    Args:
        value (Any): Date string in one of the accepted layouts, or None.

    Returns:
        str | None: ISO date, or None when no date was provided.

    Raises:
        ValidationError: The value is not a recognizable date.
    """
    if value is None:
        return None
    string_value = str(value).strip()
    if not string_value:
        return None
    for pattern in ("%Y-%m-%d", "%Y/%m/%d", "%d-%m-%Y", "%Y"):
        try:
            return datetime.strptime(string_value, pattern).date().isoformat()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(string_value).date().isoformat()
    except ValueError:
        raise ValidationError(f"Invalid release date: {string_value}")


def parse_name_list(value: Any):
    """
    Accept a list of names or a comma-separated string.

    Args:
        value (Any): Raw value from a request.

    Returns:
        list[str]: Stripped, de-duplicated names in their original order.
    """
    if value is None:
        return []
    if isinstance(value, str):
        candidates = value.split(",")
    elif isinstance(value, (list, tuple)):
        candidates = value
    else:
        raise ValidationError("Expected a list of names")

    names = []
    for candidate in candidates:
        name = str(candidate).strip()
        if name and name not in names:
            names.append(name)
    return names


def normalize_privacy(value: Any):
    """
    Normalize a privacy flag, defaulting to public.

    Args:
        value (Any): ``"public"``, ``"private"`` or empty.

    Returns:
        str: Normalized privacy value.
    """
    if value is None or value == "":
        return "public"
    normalized = str(value).strip().lower()
    if normalized not in PRIVACY_VALUES:
        raise ValidationError(f"privacy must be one of {', '.join(sorted(PRIVACY_VALUES))}")
    return normalized


def require_text(value: Any, field: str):
    """
    Return a stripped, non-empty string or raise.

    Args:
        value (Any): Raw value.
        field (str): Field name used in the error message.

    Returns:
        str: Stripped value.
    """
    text = optional_text(value, field)
    if not text:
        raise ValidationError(f"{field} is required")
    return text


def optional_text(value: Any, field: str):
    """
    Return a stripped string, or None when the value is missing or blank.

    Args:
        value (Any): Raw value.
        field (str): Field name used in the error message.

    Returns:
        str | None: Stripped value or None.

    Raises:
        ValidationError: The value is not a string.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip() or None


def parse_object_id(identifier: Any, entity: str = "Movie"):
    """
    Convert a hex string into an ObjectId.

    Args:
        identifier (Any): Hex identifier from the client.
        entity (str): Entity name used in the error message.

    Returns:
        ObjectId: Parsed identifier.

    Raises:
        NotFoundError: The identifier is not a valid ObjectId, so nothing can match it.
    """
    if isinstance(identifier, ObjectId):
        return identifier
    try:
        return ObjectId(str(identifier))
    except (InvalidId, TypeError):
        raise NotFoundError(f"{entity} not found")


def replace_in_list(values: list | None, old: Any, new: Any):
    """
    Replace every occurrence of ``old`` in a list, dropping duplicates of ``new``.

    Args:
        values (list | None): Source list.
        old (Any): Value to replace.
        new (Any): Replacement value.

    Returns:
        list: New list with the replacement applied.
    """
    replaced = []
    for value in values or []:
        candidate = new if value == old else value
        if candidate not in replaced:
            replaced.append(candidate)
    return replaced
