"""Kubernetes manifest templates for the resources a Unit owns.

Every builder returns a plain camelCase dict, named after the Unit, living in
the Unit's namespace, carrying the Unit's labels and a controller owner
reference back to it so the garbage collector removes it with the Unit.
"""

import copy

import kopf

from . import crd
from .errors import BuildError


def _metadata(unit):
    meta = unit["metadata"]
    metadata = {"name": meta["name"], "namespace": meta["namespace"]}
    if meta.get("labels"):
        metadata["labels"] = dict(meta["labels"])
    return metadata


def _adopt(manifest, unit):
    """Stamp the ownership link pointing at the Unit."""
    meta = unit.get("metadata") or {}
    missing = [
        field
        for field, value in (
            ("apiVersion", unit.get("apiVersion")),
            ("kind", unit.get("kind")),
            ("metadata.name", meta.get("name")),
            ("metadata.uid", meta.get("uid")),
        )
        if not value
    ]
    if missing:
        raise BuildError(
            f"set owner reference for {manifest['kind']} "
            f"{meta.get('namespace')}/{meta.get('name')} failed: missing {', '.join(missing)}"
        )
    kopf.append_owner_reference(manifest, owner=unit, controller=True, block_owner_deletion=True)
    return manifest


def inject_identity_env(container, app_name):
    """Replace any POD_NAME/APPNAME entries with exactly one of each."""
    env = [
        item
        for item in container.get("env") or []
        if item.get("name") not in (crd.ENV_POD_NAME, crd.ENV_APP_NAME)
    ]
    env.append(
        {
            "name": crd.ENV_POD_NAME,
            "valueFrom": {"fieldRef": {"apiVersion": "v1", "fieldPath": "metadata.name"}},
        }
    )
    env.append({"name": crd.ENV_APP_NAME, "value": app_name})
    container["env"] = env
    return container


def _replicas(spec):
    replicas = spec.get("replicas", 1)
    if replicas is None:
        return 1
    if isinstance(replicas, bool) or not isinstance(replicas, int) or replicas < 1:
        raise BuildError(f"replicas must be a positive integer, got {replicas!r}")
    return replicas


def create_workload_manifest(unit, kind):
    """Create Deployment or StatefulSet manifest from the Unit's template."""
    name = unit["metadata"]["name"]
    spec = unit.get("spec") or {}

    template = copy.deepcopy(spec.get("template") or {})
    containers = (template.get("spec") or {}).get("containers") or []
    if not containers:
        raise BuildError(f"{kind} {name}: template must declare at least one container")

    selector = copy.deepcopy(spec.get("selector") or crd.default_selector(name))
    match_labels = selector.get("matchLabels") or {}
    template.setdefault("metadata", {})
    template["metadata"]["labels"] = {**(template["metadata"].get("labels") or {}), **match_labels}

    inject_identity_env(containers[0], name)

    workload_spec = {
        "replicas": _replicas(spec),
        "selector": selector,
        "template": template,
    }
    if kind == crd.KIND_STATEFULSET:
        workload_spec["serviceName"] = name

    manifest = {
        "apiVersion": crd.API_VERSIONS[kind],
        "kind": kind,
        "metadata": _metadata(unit),
        "spec": workload_spec,
    }
    return _adopt(manifest, unit)


SERVICE_PORT_FIELDS = ("name", "protocol", "port", "targetPort", "nodePort")


def _service_port(port):
    if not isinstance(port, dict) or not isinstance(port.get("port"), int):
        raise BuildError(f"service port must declare an integer 'port', got {port!r}")
    return {key: port[key] for key in SERVICE_PORT_FIELDS if port.get(key) is not None}


def create_service_manifest(unit, service_spec):
    """Create ClusterIP Service manifest selecting the Unit's pods."""
    name = unit["metadata"]["name"]
    if not isinstance(service_spec, dict):
        raise BuildError(f"Service {name}: relationResource.service must be an object")

    spec = {
        "type": "ClusterIP",
        "ports": [_service_port(port) for port in service_spec.get("ports") or []],
        "selector": {"app": name},
    }
    if service_spec.get("clusterIP"):
        spec["clusterIP"] = service_spec["clusterIP"]

    manifest = {
        "apiVersion": crd.API_VERSIONS[crd.KIND_SERVICE],
        "kind": crd.KIND_SERVICE,
        "metadata": _metadata(unit),
        "spec": spec,
    }
    return _adopt(manifest, unit)


def ingress_rule(host, service_name):
    return {
        "host": host,
        "http": {
            "paths": [
                {
                    "path": crd.INGRESS_PATH,
                    "pathType": crd.INGRESS_PATH_TYPE,
                    "backend": {
                        "service": {
                            "name": service_name,
                            "port": {"number": crd.INGRESS_BACKEND_PORT},
                        }
                    },
                }
            ]
        },
    }


def create_ingress_manifest(unit, ingress_spec):
    """Create Ingress manifest with one rule per declared domain."""
    name = unit["metadata"]["name"]
    domains = ingress_spec.get("domains") if isinstance(ingress_spec, dict) else None
    if not isinstance(domains, list) or not all(isinstance(d, str) and d for d in domains):
        raise BuildError(f"Ingress {name}: relationResource.ingress.domains must be a list of hosts")

    manifest = {
        "apiVersion": crd.API_VERSIONS[crd.KIND_INGRESS],
        "kind": crd.KIND_INGRESS,
        "metadata": _metadata(unit),
        "spec": {"rules": [ingress_rule(domain, name) for domain in domains]},
    }
    return _adopt(manifest, unit)


def create_pvc_manifest(unit, pvc_spec):
    """Create PVC manifest, passing the declared claim spec through."""
    name = unit["metadata"]["name"]
    if not isinstance(pvc_spec, dict) or not pvc_spec:
        raise BuildError(f"PersistentVolumeClaim {name}: relationResource.pvc must be a claim spec")

    manifest = {
        "apiVersion": crd.API_VERSIONS[crd.KIND_PVC],
        "kind": crd.KIND_PVC,
        "metadata": _metadata(unit),
        "spec": copy.deepcopy(pvc_spec),
    }
    return _adopt(manifest, unit)
