"""Owned resources: the objects a Unit drives, and how each one is applied.

Every owned kind implements the same four operations:

* ``build(unit)``: desired manifest for this Unit (raises ``BuildError``).
* ``exists(unit, store, logger)``: ``(found, observed)``; absence is
  ``(False, None)``, any other lookup failure raises ``StoreError``.
* ``apply(unit, store, logger)``: create when absent, otherwise update only
  when a field the operator sets has drifted or was removed from the Unit
  since the last apply (recorded in the last-applied-spec annotation).
* ``reflect_status(unit, store, logger)``: merge the observed state into
  ``unit["status"]`` in place and return the unit; never persists.
"""

import copy
import json

from . import crd
from .config import settings
from .errors import BuildError, StoreError
from .probe import probe_port
from .templates import (
    create_ingress_manifest,
    create_pvc_manifest,
    create_service_manifest,
    create_workload_manifest,
)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


def differs(desired, observed):
    """True if a field present in ``desired`` disagrees with ``observed``.

    Keys absent from ``desired`` are ignored, so fields the API server fills
    in after creation never count as drift. Lists must match in length and
    element by element.
    """
    if desired is None:
        return False
    if isinstance(desired, dict):
        if observed is None:
            observed = {}
        if not isinstance(observed, dict):
            return True
        return any(differs(value, observed.get(key)) for key, value in desired.items())
    if isinstance(desired, list):
        if observed is None:
            observed = []
        if not isinstance(observed, list) or len(desired) != len(observed):
            return True
        return any(differs(d, o) for d, o in zip(desired, observed))
    if desired == "" and observed is None:
        return False
    return desired != observed


def dropped(last_applied, desired):
    """True if a key the operator set last time is gone from ``desired``.

    Catches fields removed from the Unit spec, which ``differs`` cannot see
    because it only walks the desired keys.
    """
    if isinstance(last_applied, dict) and isinstance(desired, dict):
        for key, value in last_applied.items():
            if value is None:
                continue
            if desired.get(key) is None or dropped(value, desired[key]):
                return True
        return False
    if isinstance(last_applied, list) and isinstance(desired, list):
        if len(last_applied) != len(desired):
            return False
        return any(dropped(old, new) for old, new in zip(last_applied, desired))
    return False


def last_applied_spec(observed, logger):
    """The spec recorded on an owned object by the previous apply, or None."""
    annotations = (observed.get("metadata") or {}).get("annotations") or {}
    raw = annotations.get(crd.LAST_APPLIED_ANNOTATION)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning(f"Ignoring unreadable {crd.LAST_APPLIED_ANNOTATION} annotation")
        return None


def _relation_status(unit):
    status = unit.setdefault("status", {})
    return status.setdefault("relationResourceStatus", {})


class OwnedResource:
    """Base class for the owned kinds; subclasses set ``kind``."""

    kind = None
    # Top-level status keys and relationResourceStatus keys this kind writes
    status_key = None
    relation_keys = ()

    def build(self, unit):
        raise NotImplementedError

    def differs(self, desired, observed):
        return differs(desired.get("spec"), observed.get("spec"))

    def prepare_update(self, desired, observed):
        """Hook to carry server-assigned fields into the candidate before diffing."""
        return desired

    def exists(self, unit, store, logger):
        meta = unit["metadata"]
        try:
            found = store.get(self.kind, meta["namespace"], meta["name"])
        except StoreError as e:
            logger.error(f"{self.kind} {meta['namespace']}/{meta['name']} lookup failed: {e}")
            raise
        if found is None:
            return False, None
        return True, found

    def observed(self, unit, store):
        meta = unit["metadata"]
        found = store.get(self.kind, meta["namespace"], meta["name"])
        if found is None:
            raise StoreError(
                f"{self.kind} {meta['namespace']}/{meta['name']} not found", status=404
            )
        return found

    def apply(self, unit, store, logger):
        desired = self.build(unit)
        namespace = desired["metadata"]["namespace"]
        name = desired["metadata"]["name"]
        desired_spec = copy.deepcopy(desired.get("spec") or {})
        desired["metadata"].setdefault("annotations", {})[crd.LAST_APPLIED_ANNOTATION] = json.dumps(
            desired_spec, sort_keys=True
        )

        exist, found = self.exists(unit, store, logger)
        if not exist:
            logger.info(f"{self.kind} {namespace}/{name} not found, creating it")
            store.create(desired)
            return CREATED

        removed = dropped(last_applied_spec(found, logger), desired_spec)
        candidate = self.prepare_update(desired, found)
        if not removed and not self.differs(candidate, found):
            logger.debug(f"{self.kind} {namespace}/{name} is up to date")
            return UNCHANGED

        resource_version = found.get("metadata", {}).get("resourceVersion")
        if resource_version:
            candidate["metadata"]["resourceVersion"] = resource_version
        logger.info(f"Updating {self.kind} {namespace}/{name}")
        store.update(candidate)
        return UPDATED

    def reflect_status(self, unit, store, logger):
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__}>"


class OwnedWorkload(OwnedResource):
    """Deployment or StatefulSet running the Unit's pod template."""

    def build(self, unit):
        return create_workload_manifest(unit, self.kind)

    def reflect_status(self, unit, store, logger):
        found = self.observed(unit, store)
        workload_status = copy.deepcopy(found.get("status") or {})
        name = unit["metadata"]["name"]

        status = unit.setdefault("status", {})
        status[self.status_key] = workload_status
        status["replicas"] = workload_status.get("replicas", 0)
        status["selector"] = crd.selector_string(
            (unit.get("spec") or {}).get("selector") or crd.default_selector(name)
        )
        return unit


class OwnedDeployment(OwnedWorkload):
    kind = crd.KIND_DEPLOYMENT
    status_key = "deployment"


class OwnedStatefulSet(OwnedWorkload):
    kind = crd.KIND_STATEFULSET
    status_key = "statefulSet"


class OwnedService(OwnedResource):
    """ClusterIP Service exposing the Unit's pods, with per-port health."""

    kind = crd.KIND_SERVICE
    relation_keys = ("service", "endpoint")

    def __init__(self, spec, probe_timeout=None):
        self.spec = spec
        self.probe_timeout = settings.probe_timeout if probe_timeout is None else probe_timeout

    def build(self, unit):
        return create_service_manifest(unit, self.spec)

    def prepare_update(self, desired, observed):
        # clusterIP and sessionAffinity are assigned by the API server on create
        observed_spec = observed.get("spec") or {}
        for key in ("clusterIP", "sessionAffinity"):
            if not desired["spec"].get(key) and observed_spec.get(key):
                desired["spec"][key] = observed_spec[key]
        return desired

    def reflect_status(self, unit, store, logger):
        found = self.observed(unit, store)
        spec = found.get("spec") or {}
        address = spec.get("clusterIP")

        ports = []
        for port in spec.get("ports") or []:
            health = probe_port(
                address, port.get("port"), port.get("protocol", "TCP"), self.probe_timeout
            )
            ports.append({"servicePort": copy.deepcopy(port), "health": health})

        relation = _relation_status(unit)
        relation["service"] = {
            "type": spec.get("type"),
            "clusterIP": address,
            "sessionAffinity": spec.get("sessionAffinity"),
            "ports": ports,
        }

        meta = unit["metadata"]
        endpoints = store.get(crd.KIND_ENDPOINTS, meta["namespace"], meta["name"])
        if endpoints is not None:
            relation["endpoint"] = _endpoint_members(endpoints)
        return unit


def _endpoint_members(endpoints):
    subsets = endpoints.get("subsets") or []
    if not subsets:
        return []
    members = []
    for address in subsets[0].get("addresses") or []:
        target = address.get("targetRef") or {}
        members.append(
            {
                "podName": target.get("name") or address.get("hostname", ""),
                "podIP": address.get("ip", ""),
                "nodeName": address.get("nodeName", ""),
            }
        )
    return members


class OwnedIngress(OwnedResource):
    """Ingress routing each declared domain to the Unit's Service on port 80."""

    kind = crd.KIND_INGRESS
    relation_keys = ("ingress",)

    def __init__(self, spec):
        self.spec = spec

    def build(self, unit):
        return create_ingress_manifest(unit, self.spec)

    def differs(self, desired, observed):
        desired_rules = (desired.get("spec") or {}).get("rules") or []
        observed_rules = (observed.get("spec") or {}).get("rules") or []
        return desired_rules != observed_rules

    def reflect_status(self, unit, store, logger):
        found = self.observed(unit, store)
        _relation_status(unit)["ingress"] = copy.deepcopy((found.get("spec") or {}).get("rules") or [])
        return unit


class OwnedPVC(OwnedResource):
    """PersistentVolumeClaim declared verbatim by the Unit."""

    kind = crd.KIND_PVC
    relation_keys = ("pvc",)

    def __init__(self, spec):
        self.spec = spec

    def build(self, unit):
        return create_pvc_manifest(unit, self.spec)

    def reflect_status(self, unit, store, logger):
        found = self.observed(unit, store)
        _relation_status(unit)["pvc"] = copy.deepcopy(found.get("status") or {})
        return unit


WORKLOADS = {
    crd.CATEGORY_DEPLOYMENT: OwnedDeployment,
    crd.CATEGORY_STATEFULSET: OwnedStatefulSet,
}


def owned_resources_for(unit, probe_timeout=None):
    """Select the owned resources the Unit's spec calls for.

    Exactly one workload, picked by ``spec.category``, followed by the
    Service, Ingress and PVC when their relationResource entry is present.
    """
    spec = unit.get("spec") or {}
    category = spec.get("category")
    workload = WORKLOADS.get(category)
    if workload is None:
        raise BuildError(f"Invalid category: {category!r}. Allowed: {crd.CATEGORIES}")

    resources = [workload()]
    relation = spec.get("relationResource") or {}
    if relation.get(crd.RELATION_SERVICE) is not None:
        resources.append(OwnedService(relation[crd.RELATION_SERVICE], probe_timeout))
    if relation.get(crd.RELATION_INGRESS) is not None:
        resources.append(OwnedIngress(relation[crd.RELATION_INGRESS]))
    if relation.get(crd.RELATION_PVC) is not None:
        resources.append(OwnedPVC(relation[crd.RELATION_PVC]))
    return resources


def prune_status(unit, resources):
    """Drop status fragments written for kinds the Unit no longer owns."""
    status = unit.get("status")
    if not status:
        return unit
    current = {resource.status_key for resource in resources}
    for workload in WORKLOADS.values():
        if workload.status_key not in current:
            status.pop(workload.status_key, None)

    relation = status.get("relationResourceStatus")
    if relation:
        kept = {key for resource in resources for key in resource.relation_keys}
        for key in list(relation):
            if key not in kept:
                del relation[key]
    return unit
