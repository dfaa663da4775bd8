"""Status aggregation for Unit objects."""

from datetime import datetime, timezone

LAST_UPDATE_TIME = "lastUpdateTime"


def now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _comparable(status):
    status = dict(status or {})
    status.pop(LAST_UPDATE_TIME, None)
    return status


def status_changed(old, new):
    """Structural comparison of two status documents, ignoring the timestamp."""
    return _comparable(old) != _comparable(new)


def persist_status(store, original_status, unit, logger):
    """Write ``unit["status"]`` if it differs from ``original_status``.

    Returns True if the status subresource was written.
    """
    status = unit.setdefault("status", {})
    if not status_changed(original_status, status):
        logger.debug("Unit status unchanged, skipping update")
        return False

    status[LAST_UPDATE_TIME] = now()
    meta = unit["metadata"]
    store.update_unit_status(unit)
    logger.info(f"Updated status of Unit {meta['namespace']}/{meta['name']}")
    return True
