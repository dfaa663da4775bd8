import copy
import logging

import pytest

from unit_operator import crd
from unit_operator.errors import ConflictError, StoreError


class FakeStore:
    """In-memory stand-in for the API server behind ResourceStore.

    Mimics the server-side behaviour the reconciler has to live with:
    resourceVersion bumps, optimistic-concurrency conflicts, defaulted fields
    and a clusterIP assigned to Services on create.
    """

    def __init__(self, cluster_ip="10.0.0.5"):
        self.objects = {}
        self.units = {}
        self.log = []
        self.failures = {}
        self.cluster_ip = cluster_ip
        self._version = 0

    # -- helpers -------------------------------------------------------------

    def _record(self, action, kind):
        self.log.append((action, kind))
        error = self.failures.get((action, kind))
        if error is not None:
            raise error

    def _bump(self, obj):
        self._version += 1
        obj.setdefault("metadata", {})["resourceVersion"] = str(self._version)

    def count(self, action, kind=None):
        return sum(1 for a, k in self.log if a == action and (kind is None or k == kind))

    def put(self, manifest):
        obj = copy.deepcopy(manifest)
        self._bump(obj)
        meta = obj["metadata"]
        self.objects[(obj["kind"], meta["namespace"], meta["name"])] = obj
        return obj

    def put_unit(self, unit):
        obj = copy.deepcopy(unit)
        self._bump(obj)
        meta = obj["metadata"]
        self.units[(meta["namespace"], meta["name"])] = obj
        return obj

    def set_status(self, kind, namespace, name, status):
        self.objects[(kind, namespace, name)]["status"] = copy.deepcopy(status)

    def stored(self, kind, namespace, name):
        return self.objects.get((kind, namespace, name))

    def _apply_defaults(self, obj):
        kind = obj["kind"]
        spec = obj.setdefault("spec", {})
        if kind == crd.KIND_SERVICE:
            if not spec.get("clusterIP"):
                spec["clusterIP"] = self.cluster_ip
            spec.setdefault("sessionAffinity", "None")
            spec.setdefault("clusterIPs", [spec["clusterIP"]])
            for port in spec.get("ports") or []:
                port.setdefault("protocol", "TCP")
                port.setdefault("targetPort", port["port"])
        elif kind in (crd.KIND_DEPLOYMENT, crd.KIND_STATEFULSET):
            spec.setdefault("revisionHistoryLimit", 10)
            pod_spec = spec["template"].setdefault("spec", {})
            pod_spec.setdefault("restartPolicy", "Always")
            pod_spec.setdefault("dnsPolicy", "ClusterFirst")
            for container in pod_spec.get("containers") or []:
                container.setdefault("imagePullPolicy", "IfNotPresent")
                container.setdefault("terminationMessagePath", "/dev/termination-log")
        elif kind == crd.KIND_PVC:
            spec.setdefault("volumeMode", "Filesystem")
            spec.setdefault("storageClassName", "standard")

    # -- owned resources -----------------------------------------------------

    def get(self, kind, namespace, name):
        self._record("get", kind)
        obj = self.objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def create(self, manifest):
        kind = manifest["kind"]
        self._record("create", kind)
        meta = manifest["metadata"]
        key = (kind, meta["namespace"], meta["name"])
        if key in self.objects:
            raise ConflictError(f"{kind} {meta['name']} already exists")
        obj = copy.deepcopy(manifest)
        self._apply_defaults(obj)
        self._bump(obj)
        self.objects[key] = obj

    def update(self, manifest):
        kind = manifest["kind"]
        self._record("update", kind)
        meta = manifest["metadata"]
        key = (kind, meta["namespace"], meta["name"])
        existing = self.objects.get(key)
        if existing is None:
            raise StoreError(f"{kind} {meta['name']} not found", status=404)
        version = meta.get("resourceVersion")
        if version and version != existing["metadata"]["resourceVersion"]:
            raise ConflictError(f"{kind} {meta['name']} has been modified")
        obj = copy.deepcopy(manifest)
        self._apply_defaults(obj)
        if "status" in existing:
            obj["status"] = existing["status"]
        self._bump(obj)
        self.objects[key] = obj

    # -- units ---------------------------------------------------------------

    def get_unit(self, namespace, name):
        self._record("get_unit", crd.KIND)
        obj = self.units.get((namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def _check_unit_version(self, unit):
        meta = unit["metadata"]
        existing = self.units.get((meta["namespace"], meta["name"]))
        if existing is None:
            raise StoreError(f"Unit {meta['name']} not found", status=404)
        version = meta.get("resourceVersion")
        if version and version != existing["metadata"]["resourceVersion"]:
            raise ConflictError(f"Unit {meta['name']} has been modified")
        return existing

    def update_unit(self, unit):
        self._record("update_unit", crd.KIND)
        existing = self._check_unit_version(unit)
        meta = unit["metadata"]
        existing["metadata"] = copy.deepcopy(meta)
        existing["spec"] = copy.deepcopy(unit.get("spec"))
        self._bump(existing)
        if existing["metadata"].get("deletionTimestamp") and not existing["metadata"].get("finalizers"):
            del self.units[(meta["namespace"], meta["name"])]
        return copy.deepcopy(existing)

    def update_unit_status(self, unit):
        self._record("update_unit_status", crd.KIND)
        existing = self._check_unit_version(unit)
        existing["status"] = copy.deepcopy(unit.get("status"))
        self._bump(existing)
        return copy.deepcopy(existing)

    def list_units(self, namespace=None):
        self._record("list_units", crd.KIND)
        return [
            copy.deepcopy(unit)
            for (ns, _), unit in sorted(self.units.items())
            if namespace is None or ns == namespace
        ]

    def create_unit(self, unit):
        self._record("create_unit", crd.KIND)
        meta = unit["metadata"]
        if (meta["namespace"], meta["name"]) in self.units:
            raise ConflictError(f"Unit {meta['name']} already exists")
        return self.put_unit(unit)

    def delete_unit(self, namespace, name):
        self._record("delete_unit", crd.KIND)
        return self.units.pop((namespace, name), None) is not None


def make_unit(
    name="web",
    namespace="default",
    category=crd.CATEGORY_DEPLOYMENT,
    replicas=1,
    env=None,
    relation=None,
    labels=None,
    **metadata,
):
    container = {"name": "app", "image": "nginx:1.25"}
    if env is not None:
        container["env"] = env
    spec = {
        "category": category,
        "replicas": replicas,
        "selector": {"matchLabels": {"app": name}},
        "template": {
            "metadata": {"labels": {"app": name}},
            "spec": {"containers": [container]},
        },
    }
    if relation is not None:
        spec["relationResource"] = relation
    meta = {
        "name": name,
        "namespace": namespace,
        "uid": f"uid-{name}",
        "labels": labels if labels is not None else {"team": "platform"},
    }
    meta.update(metadata)
    return {
        "apiVersion": crd.API_VERSION,
        "kind": crd.KIND,
        "metadata": meta,
        "spec": spec,
    }


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def log():
    return logging.getLogger("tests")


@pytest.fixture(autouse=True)
def probes(monkeypatch):
    """Replace the service port probe with a recorder that reports healthy."""
    calls = []

    def fake_probe(address, port, protocol="TCP", timeout=0.1):
        calls.append((address, port, protocol, timeout))
        return True

    monkeypatch.setattr("unit_operator.resources.probe_port", fake_probe)
    return calls
