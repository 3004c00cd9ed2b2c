"""Map scraper dataset items onto Profile fields.

Different versions of the Instagram scraper actor name the same field
differently, and some nest the account under ``user``. Each canonical
field has an ordered list of candidate keys; the first non-empty one wins.
"""
import logging

from django.db import IntegrityError, transaction

from .exceptions import NormalizationError
from .models import Profile

logger = logging.getLogger(__name__)

FIELD_CANDIDATES = {
    "username": ("username", "handle", "user.username"),
    "full_name": ("fullName", "name", "user.fullName"),
    "profile_pic": ("profilePicUrl", "avatar", "user.profilePicUrl"),
    "bio": ("biography", "bio", "user.biography"),
    "followers_count": ("followersCount", "followers", "user.followersCount"),
    "following_count": ("followingCount", "following", "user.followingCount"),
}

TEXT_FIELDS = ("username", "full_name", "profile_pic", "bio")
COUNT_FIELDS = ("followers_count", "following_count")


def _is_empty(value):
    if isinstance(value, str):
        return not value.strip()
    return value is None or value == {} or value == []


def _clean_handle(value):
    return str(value).strip().lstrip("@").strip()


def _lookup(item, path):
    value = item
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def resolve(item, field):
    """First non-empty candidate value for ``field``, or None."""
    for path in FIELD_CANDIDATES[field]:
        value = _lookup(item, path)
        if field == "username" and not _is_empty(value):
            value = _clean_handle(value)
        if not _is_empty(value):
            return value
    return None


def _to_count(value, field):
    if value is None:
        return 0
    if isinstance(value, bool):
        raise NormalizationError(f"Invalid {field}: {value!r}")
    if isinstance(value, (int, float)):
        return max(0, int(value))
    if isinstance(value, str):
        cleaned = value.replace(",", "").replace("_", "").strip()
        try:
            return max(0, int(float(cleaned)))
        except ValueError:
            raise NormalizationError(f"Invalid {field}: {value!r}")
    raise NormalizationError(f"Invalid {field}: {value!r}")


def normalize_item(item):
    """Return canonical profile fields, or None when the item has no usable handle."""
    if not isinstance(item, dict):
        raise NormalizationError(f"Unexpected result item: {type(item).__name__}")

    username = resolve(item, "username")
    if username is None:
        return None

    fields = {"username": username}
    for field in TEXT_FIELDS[1:]:
        value = resolve(item, field)
        fields[field] = "" if value is None else str(value)
    for field in COUNT_FIELDS:
        fields[field] = _to_count(resolve(item, field), field)
    return fields


def store_profile(fields, scrape_run=None):
    """Insert a profile unless the handle is already known. Returns (profile, created)."""
    defaults = {k: v for k, v in fields.items() if k != "username"}
    defaults["scrape_run"] = scrape_run
    try:
        with transaction.atomic():
            return Profile.objects.get_or_create(username=fields["username"], defaults=defaults)
    except IntegrityError:
        # Lost an insert race for the same handle; the other writer's row stands.
        return Profile.objects.get(username=fields["username"]), False


def store_profiles(items, scrape_run=None):
    """Normalize and insert a batch. Returns how many items carried a handle and were stored or already present."""
    processed = 0
    created = 0
    for item in items:
        try:
            fields = normalize_item(item)
            if fields is None:
                continue
            _, was_created = store_profile(fields, scrape_run)
        except Exception as e:
            logger.warning(f"Skipping result item: {e}")
            continue
        processed += 1
        created += int(was_created)

    logger.info(f"Stored {created} new profiles ({processed} processed, {len(items)} items)")
    return processed
