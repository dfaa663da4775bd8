"""CRD schema constants and helpers."""

# CRD Group, Version, and Kind
GROUP = "custom.my.crd.com"
VERSION = "v1"
PLURAL = "units"
KIND = "Unit"

# API version string
API_VERSION = f"{GROUP}/{VERSION}"

# Allowed workload categories
CATEGORY_DEPLOYMENT = "Deployment"
CATEGORY_STATEFULSET = "StatefulSet"
CATEGORIES = [CATEGORY_DEPLOYMENT, CATEGORY_STATEFULSET]

FINALIZER = "storage.finalizers.tutorial.kubebuilder.io"

# Annotation on owned objects holding the spec the operator last applied
LAST_APPLIED_ANNOTATION = f"{GROUP}/last-applied-spec"

# Identity environment variables injected into the primary container
ENV_POD_NAME = "POD_NAME"
ENV_APP_NAME = "APPNAME"

# Route policy: plain http to the service sharing the Unit's name
INGRESS_PATH = "/"
INGRESS_PATH_TYPE = "Prefix"
INGRESS_BACKEND_PORT = 80

# Owned resource kinds
KIND_DEPLOYMENT = "Deployment"
KIND_STATEFULSET = "StatefulSet"
KIND_SERVICE = "Service"
KIND_INGRESS = "Ingress"
KIND_PVC = "PersistentVolumeClaim"
KIND_ENDPOINTS = "Endpoints"

API_VERSIONS = {
    KIND_DEPLOYMENT: "apps/v1",
    KIND_STATEFULSET: "apps/v1",
    KIND_SERVICE: "v1",
    KIND_INGRESS: "networking.k8s.io/v1",
    KIND_PVC: "v1",
    KIND_ENDPOINTS: "v1",
}

# Keys of spec.relationResource
RELATION_SERVICE = "service"
RELATION_INGRESS = "ingress"
RELATION_PVC = "pvc"


def default_selector(name):
    """Selector the admission defaulter fills in when none is given."""
    return {"matchLabels": {"app": name}}


def selector_string(selector):
    """Render a label selector as the ``k=v,k=v`` form used by the scale subresource."""
    labels = (selector or {}).get("matchLabels") or {}
    return ",".join(f"{key}={labels[key]}" for key in sorted(labels))
