"""Finalizer handling that keeps a Unit around until its pre-delete hook succeeds.

A Unit is Active while ``metadata.deletionTimestamp`` is unset and
Terminating once it is set. Active Units get the finalizer token added;
Terminating Units run ``pre_delete`` and then drop the token so the API
server can purge them.
"""

from .errors import HookError


def is_terminating(unit):
    return bool(unit.get("metadata", {}).get("deletionTimestamp"))


def has_finalizer(unit, finalizer):
    return finalizer in (unit.get("metadata", {}).get("finalizers") or [])


def ensure_finalizer(unit, store, logger, finalizer):
    """Register the finalizer on an Active Unit. Returns True if the Unit was updated."""
    if has_finalizer(unit, finalizer):
        return False

    meta = unit.setdefault("metadata", {})
    meta["finalizers"] = list(meta.get("finalizers") or []) + [finalizer]
    try:
        updated = store.update_unit(unit)
    except Exception:
        logger.error(f"Adding finalizer to Unit {meta.get('namespace')}/{meta.get('name')} failed")
        raise
    # Keep the fresh resourceVersion for the later status write
    if updated and updated.get("metadata", {}).get("resourceVersion"):
        meta["resourceVersion"] = updated["metadata"]["resourceVersion"]
    logger.info(f"Added finalizer {finalizer} to Unit {meta.get('namespace')}/{meta.get('name')}")
    return True


def pre_delete(unit, logger):
    """Cleanup that must finish before the Unit may be purged.

    Owned resources carry a controller owner reference, so the garbage
    collector removes them with the Unit; nothing else needs to happen here.
    """


def handle_termination(unit, store, logger, finalizer, hook=None):
    """Run the pre-delete hook and drop the finalizer. Returns True if it was removed.

    A hook failure is raised as ``HookError`` and the finalizer stays, so the
    deletion is retried on the next reconcile.
    """
    if not has_finalizer(unit, finalizer):
        return False

    meta = unit["metadata"]
    key = f"{meta.get('namespace')}/{meta.get('name')}"
    hook = hook or pre_delete
    try:
        hook(unit, logger)
    except Exception as e:
        logger.error(f"Pre-delete hook for Unit {key} failed: {e}")
        raise HookError(f"pre-delete hook for Unit {key} failed: {e}") from e

    meta["finalizers"] = [item for item in meta.get("finalizers") or [] if item != finalizer]
    store.update_unit(unit)
    logger.info(f"Removed finalizer {finalizer} from Unit {key}")
    return True
