"""Core reconciliation logic."""

import copy
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from . import crd
from .config import settings
from .errors import BuildError, ReconcileError
from .finalizer import ensure_finalizer, handle_termination, is_terminating
from .resources import owned_resources_for, prune_status
from .status import persist_status

logger = logging.getLogger(__name__)

PHASE_ABSENT = "Absent"
PHASE_ACTIVE = "Active"
PHASE_TERMINATING = "Terminating"
PHASE_UNKNOWN = "Unknown"


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass over a Unit."""

    phase: str
    error: Optional[Exception] = None
    # Retrying cannot help (e.g. an unsupported category)
    permanent: bool = False
    status_persisted: bool = False
    applied: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self):
        return self.error is None

    @property
    def requeue(self):
        return self.error is not None and not self.permanent


def reconcile_unit(store, namespace, name, logger=logger, finalizer=None, probe_timeout=None):
    """Reconcile one Unit: finalizer step, apply owned resources, refresh status.

    Failures of individual owned resources are collected, never short-circuit
    the others, and come back as a ``ReconcileError`` in ``result.error``.
    """
    finalizer = finalizer or settings.finalizer
    key = f"{namespace}/{name}"

    unit = store.get_unit(namespace, name)
    if unit is None:
        logger.info(f"Unit {key} not found, nothing to do")
        return ReconcileResult(phase=PHASE_ABSENT)

    # Deletion: run the hook, drop the finalizer, never converge owned resources
    if is_terminating(unit):
        logger.info(f"Unit {key} is being deleted")
        try:
            handle_termination(unit, store, logger, finalizer)
        except Exception as e:
            return ReconcileResult(phase=PHASE_TERMINATING, error=e)
        return ReconcileResult(phase=PHASE_TERMINATING)

    try:
        ensure_finalizer(unit, store, logger, finalizer)
    except Exception as e:
        return ReconcileResult(phase=PHASE_ACTIVE, error=e)

    try:
        resources = owned_resources_for(unit, probe_timeout=probe_timeout)
    except BuildError as e:
        logger.error(f"Unit {key}: {e}")
        return ReconcileResult(phase=PHASE_ACTIVE, error=e, permanent=True)

    result = ReconcileResult(phase=PHASE_ACTIVE)
    failures = []

    for resource in resources:
        try:
            outcome = resource.apply(unit, store, logger)
            result.applied.append((resource.kind, outcome))
        except Exception as e:
            logger.error(f"Applying {resource.kind} for Unit {key} failed: {e}")
            failures.append((resource.kind, e))

    original_status = copy.deepcopy(unit.get("status") or {})
    working = prune_status(copy.deepcopy(unit), resources)
    for resource in resources:
        try:
            working = resource.reflect_status(working, store, logger)
        except Exception as e:
            logger.error(f"Reading {resource.kind} status for Unit {key} failed: {e}")
            failures.append((resource.kind, e))

    try:
        result.status_persisted = persist_status(store, original_status, working, logger)
    except Exception as e:
        logger.error(f"Updating status of Unit {key} failed: {e}")
        failures.append((crd.KIND, e))

    if failures:
        result.error = ReconcileError(failures)
        logger.error(f"Reconcile Unit {key} failed: {result.error}")
    else:
        logger.info(f"Reconcile Unit {key} success")
    return result


def safe_reconcile(store, namespace, name, logger=logger, **kwargs):
    """Run ``reconcile_unit`` and turn any unexpected exception into a failed result."""
    try:
        return reconcile_unit(store, namespace, name, logger=logger, **kwargs)
    except Exception as e:
        logger.error(f"Reconcile Unit {namespace}/{name} crashed: {e!r}", exc_info=e)
        return ReconcileResult(phase=PHASE_UNKNOWN, error=e)
