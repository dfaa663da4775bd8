"""Kubernetes client helpers and the resource store the reconciler works against."""

import logging
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from . import crd
from .config import settings
from .errors import ConflictError, StoreError

logger = logging.getLogger(__name__)

# Initialize clients
_clients = None


def init_clients():
    """Initialize Kubernetes clients."""
    global _clients

    if settings.in_cluster:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    else:
        try:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes config")
        except config.ConfigException:
            config.load_kube_config(config_file=settings.kubeconfig or None)
            logger.info("Loaded kubeconfig")

    api_client = client.ApiClient()
    _clients = {
        "api_client": api_client,
        "core": client.CoreV1Api(api_client),
        "apps": client.AppsV1Api(api_client),
        "networking": client.NetworkingV1Api(api_client),
        "custom": client.CustomObjectsApi(api_client),
    }
    return _clients


def get_clients():
    """Get initialized Kubernetes clients."""
    if _clients is None:
        init_clients()
    return _clients


def _describe(e):
    return f"{e.status} {e.reason}".strip()


class ResourceStore:
    """Get/create/update access to the objects a Unit owns, as plain dicts.

    Absence is reported as ``None``, a stale resource version as
    ``ConflictError`` and every other API failure as ``StoreError``.
    """

    def __init__(self, clients=None):
        clients = clients or get_clients()
        self.api_client = clients["api_client"]
        self.core = clients["core"]
        self.apps = clients["apps"]
        self.networking = clients["networking"]
        self.custom = clients["custom"]

    # -- typed api dispatch -------------------------------------------------

    def _methods(self, kind):
        if kind == crd.KIND_DEPLOYMENT:
            return self.apps, "deployment"
        if kind == crd.KIND_STATEFULSET:
            return self.apps, "stateful_set"
        if kind == crd.KIND_SERVICE:
            return self.core, "service"
        if kind == crd.KIND_INGRESS:
            return self.networking, "ingress"
        if kind == crd.KIND_PVC:
            return self.core, "persistent_volume_claim"
        if kind == crd.KIND_ENDPOINTS:
            return self.core, "endpoints"
        raise ValueError(f"Unsupported kind: {kind}")

    def _to_dict(self, obj, kind):
        data = self.api_client.sanitize_for_serialization(obj)
        # Typed reads leave apiVersion/kind empty
        data.setdefault("apiVersion", crd.API_VERSIONS[kind])
        data.setdefault("kind", kind)
        return data

    def _raise(self, action, what, e):
        if e.status == 409:
            raise ConflictError(f"{action} {what} conflict: {_describe(e)}")
        raise StoreError(f"{action} {what} failed: {_describe(e)}", status=e.status)

    def get(self, kind, namespace, name):
        """Fetch an object, or None if it does not exist."""
        api, suffix = self._methods(kind)
        try:
            obj = getattr(api, f"read_namespaced_{suffix}")(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            self._raise("get", f"{kind} {namespace}/{name}", e)
        return self._to_dict(obj, kind)

    def create(self, manifest):
        kind = manifest["kind"]
        namespace = manifest["metadata"]["namespace"]
        api, suffix = self._methods(kind)
        try:
            getattr(api, f"create_namespaced_{suffix}")(namespace=namespace, body=manifest)
        except ApiException as e:
            self._raise("create", f"{kind} {namespace}/{manifest['metadata']['name']}", e)

    def update(self, manifest):
        kind = manifest["kind"]
        namespace = manifest["metadata"]["namespace"]
        name = manifest["metadata"]["name"]
        api, suffix = self._methods(kind)
        try:
            getattr(api, f"replace_namespaced_{suffix}")(
                name=name, namespace=namespace, body=manifest
            )
        except ApiException as e:
            self._raise("update", f"{kind} {namespace}/{name}", e)

    # -- Unit custom objects -------------------------------------------------

    def get_unit(self, namespace, name):
        try:
            return self.custom.get_namespaced_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                namespace=namespace,
                plural=crd.PLURAL,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            self._raise("get", f"{crd.KIND} {namespace}/{name}", e)

    def list_units(self, namespace=None):
        try:
            if namespace:
                response = self.custom.list_namespaced_custom_object(
                    group=crd.GROUP,
                    version=crd.VERSION,
                    namespace=namespace,
                    plural=crd.PLURAL,
                )
            else:
                response = self.custom.list_cluster_custom_object(
                    group=crd.GROUP,
                    version=crd.VERSION,
                    plural=crd.PLURAL,
                )
        except ApiException as e:
            self._raise("list", crd.PLURAL, e)
        return response.get("items", [])

    def create_unit(self, unit):
        namespace = unit["metadata"]["namespace"]
        try:
            return self.custom.create_namespaced_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                namespace=namespace,
                plural=crd.PLURAL,
                body=unit,
            )
        except ApiException as e:
            self._raise("create", f"{crd.KIND} {namespace}/{unit['metadata']['name']}", e)

    def update_unit(self, unit):
        """Replace the Unit object (metadata and spec); status is ignored by the API."""
        namespace = unit["metadata"]["namespace"]
        name = unit["metadata"]["name"]
        try:
            return self.custom.replace_namespaced_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                namespace=namespace,
                plural=crd.PLURAL,
                name=name,
                body=unit,
            )
        except ApiException as e:
            self._raise("update", f"{crd.KIND} {namespace}/{name}", e)

    def update_unit_status(self, unit):
        namespace = unit["metadata"]["namespace"]
        name = unit["metadata"]["name"]
        try:
            return self.custom.replace_namespaced_custom_object_status(
                group=crd.GROUP,
                version=crd.VERSION,
                namespace=namespace,
                plural=crd.PLURAL,
                name=name,
                body=unit,
            )
        except ApiException as e:
            self._raise("update status of", f"{crd.KIND} {namespace}/{name}", e)

    def delete_unit(self, namespace, name):
        """Request deletion; returns False if the Unit was already gone."""
        try:
            self.custom.delete_namespaced_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                namespace=namespace,
                plural=crd.PLURAL,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return False
            self._raise("delete", f"{crd.KIND} {namespace}/{name}", e)
        return True
