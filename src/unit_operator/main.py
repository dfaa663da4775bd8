"""Main operator entrypoint using Kopf."""

import logging
import threading
from collections import defaultdict

import kopf

from . import config, crd
from .k8s import ResourceStore
from .reconcile import PHASE_ABSENT, safe_reconcile

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Owned kinds whose changes re-trigger the owning Unit: (group, version, plural)
OWNED_RESOURCES = [
    ("apps", "v1", "deployments"),
    ("apps", "v1", "statefulsets"),
    ("", "v1", "services"),
    ("networking.k8s.io", "v1", "ingresses"),
    ("", "v1", "persistentvolumeclaims"),
]

# One reconcile at a time per Unit key, whichever handler triggered it
_locks = defaultdict(threading.Lock)
_locks_guard = threading.Lock()
_store = None


def get_store():
    global _store
    if _store is None:
        _store = ResourceStore()
    return _store


def _lock_for(namespace, name):
    with _locks_guard:
        return _locks[(namespace, name)]


def forget(namespace, name):
    """Drop the lock of a Unit that no longer exists."""
    with _locks_guard:
        _locks.pop((namespace, name), None)


def run_reconcile(namespace, name, logger):
    """Reconcile a Unit key under its lock; returns the ReconcileResult."""
    with _lock_for(namespace, name):
        result = safe_reconcile(get_store(), namespace, name, logger=logger)
    if result.phase == PHASE_ABSENT:
        forget(namespace, name)
    return result


def owner_unit(owner_references):
    """Name of the controlling Unit in a list of owner references, if any."""
    for ref in owner_references or []:
        if (
            ref.get("kind") == crd.KIND
            and ref.get("apiVersion") == crd.API_VERSION
            and ref.get("controller")
        ):
            return ref.get("name")
    return None


def is_owned_by_unit(meta, **_):
    return owner_unit(meta.get("ownerReferences")) is not None


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **kwargs):
    settings.posting.enabled = True
    settings.execution.max_workers = config.settings.max_workers
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=crd.GROUP,
        key="last-handled-configuration",
    )
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=crd.GROUP)
    logger.info(
        f"Unit operator started (max_workers={config.settings.max_workers}, "
        f"resync={config.settings.resync_interval}s, "
        f"watch_owned={config.settings.watch_owned})"
    )


@kopf.on.create(crd.GROUP, crd.VERSION, crd.PLURAL)
@kopf.on.update(crd.GROUP, crd.VERSION, crd.PLURAL)
@kopf.on.resume(crd.GROUP, crd.VERSION, crd.PLURAL)
def unit_handler(name, namespace, logger, **kwargs):
    """Handle Unit create/update/resume events."""
    logger.info(f"Handling Unit {name} in namespace {namespace}")

    result = run_reconcile(namespace, name, logger)
    if result.permanent:
        raise kopf.PermanentError(str(result.error))
    if result.requeue:
        raise kopf.TemporaryError(
            f"Reconciliation failed: {result.error}", delay=config.settings.retry_delay
        )


@kopf.on.delete(crd.GROUP, crd.VERSION, crd.PLURAL)
def unit_deletion(name, namespace, logger, **kwargs):
    """Run the Terminating step once deletion has been requested.

    Timers stop once deletion starts, so a failed step is retried by kopf
    through TemporaryError until the finalizer is released.
    """
    result = run_reconcile(namespace, name, logger)
    if result.requeue:
        raise kopf.TemporaryError(
            f"Deleting Unit {namespace}/{name} is blocked: {result.error}",
            delay=config.settings.retry_delay,
        )
    forget(namespace, name)


@kopf.timer(crd.GROUP, crd.VERSION, crd.PLURAL, interval=config.settings.resync_interval)
def unit_resync(name, namespace, logger, **kwargs):
    """Periodic level-triggered reconciliation."""
    logger.debug(f"Timer reconciliation for Unit {name}")
    result = run_reconcile(namespace, name, logger)
    if not result.ok:
        logger.warning(f"Timer reconciliation of Unit {namespace}/{name} failed: {result.error}")


def owned_resource_event(meta, namespace, logger, **kwargs):
    """Reconcile the owning Unit when one of its resources changes."""
    unit_name = owner_unit(meta.get("ownerReferences"))
    if unit_name is None:
        return
    logger.debug(f"{meta.get('name')} changed, reconciling owner Unit {namespace}/{unit_name}")
    result = run_reconcile(namespace, unit_name, logger)
    if not result.ok:
        logger.warning(f"Reconciliation of Unit {namespace}/{unit_name} failed: {result.error}")


if config.settings.watch_owned:
    for _group, _version, _plural in OWNED_RESOURCES:
        kopf.on.event(
            _group, _version, _plural, id=f"owned-{_plural}", when=is_owned_by_unit
        )(owned_resource_event)


def main():
    """Run the operator against all namespaces."""
    kopf.run(clusterwide=True)


if __name__ == "__main__":
    main()
