#!/usr/bin/env python3
"""
Unit CLI

A command-line interface for managing Unit resources.
Makes Unit resources feel like native Kubernetes primitives.
"""

import argparse
import json
import sys
import time

from kubernetes import config

from unit_operator import crd
from unit_operator.errors import StoreError
from unit_operator.k8s import ResourceStore, init_clients


def connect():
    """Load Kubernetes configuration and return a ResourceStore, or None."""
    try:
        return ResourceStore(init_clients())
    except config.ConfigException as e:
        print(f"Error loading Kubernetes config: {e}", file=sys.stderr)
        return None


def _store(store):
    store = store or connect()
    if store is None:
        sys.exit(1)
    return store


def build_unit_body(
    name,
    namespace,
    category=crd.CATEGORY_DEPLOYMENT,
    image="nginx:latest",
    replicas=1,
    container_port=None,
    service_port=None,
    domains=None,
    storage_size=None,
    storage_class=None,
):
    """Build a Unit resource with the defaults the admission webhook would apply."""
    labels = {"app": name}
    container = {"name": name, "image": image}
    if container_port:
        container["ports"] = [{"containerPort": container_port}]

    spec = {
        "category": category,
        "replicas": replicas,
        "selector": {"matchLabels": dict(labels)},
        "template": {
            "metadata": {"labels": dict(labels)},
            "spec": {"containers": [container]},
        },
    }

    relation = {}
    if service_port:
        port = {"name": "http", "protocol": "TCP", "port": service_port}
        if container_port:
            port["targetPort"] = container_port
        relation[crd.RELATION_SERVICE] = {"ports": [port]}
    if domains:
        relation[crd.RELATION_INGRESS] = {"domains": list(domains)}
    if storage_size:
        pvc = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": storage_size}},
        }
        if storage_class:
            pvc["storageClassName"] = storage_class
        relation[crd.RELATION_PVC] = pvc
    if relation:
        spec["relationResource"] = relation

    return {
        "apiVersion": crd.API_VERSION,
        "kind": crd.KIND,
        "metadata": {"name": name, "namespace": namespace, "labels": dict(labels)},
        "spec": spec,
    }


def cmd_create(args, store=None):
    """Create a Unit."""
    if args.category not in crd.CATEGORIES:
        print(f"✗ Invalid category: {args.category}. Allowed: {crd.CATEGORIES}", file=sys.stderr)
        sys.exit(1)

    store = _store(store)
    body = build_unit_body(
        args.name,
        args.namespace,
        category=args.category,
        image=args.image,
        replicas=args.replicas,
        container_port=args.container_port,
        service_port=args.service_port,
        domains=args.domain,
        storage_size=args.storage_size,
        storage_class=args.storage_class,
    )

    try:
        store.create_unit(body)
    except StoreError as e:
        if e.status == 409:
            print(f"✗ Unit '{args.name}' already exists", file=sys.stderr)
        else:
            print(f"✗ Failed to create Unit: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"✓ Unit '{args.name}' created")
    print(f"\nWatch status: unitctl watch {args.name} -n {args.namespace}")


def workload_status(status):
    return status.get("deployment") or status.get("statefulSet") or {}


def describe_unit(unit):
    """Render a Unit and its owned-resource status as text lines."""
    metadata = unit.get("metadata", {})
    spec = unit.get("spec", {})
    status = unit.get("status", {})
    relation = status.get("relationResourceStatus", {})
    workload = workload_status(status)

    lines = [
        f"Unit: {metadata.get('name')}",
        f"Namespace: {metadata.get('namespace')}",
        "",
        "Spec:",
        f"  Category: {spec.get('category', 'N/A')}",
        f"  Replicas: {spec.get('replicas', 'N/A')}",
        "",
        "Status:",
        f"  Replicas: {workload.get('readyReplicas', 0)}/{status.get('replicas', 0)} ready",
        f"  Selector: {status.get('selector', 'N/A')}",
        f"  Last update: {status.get('lastUpdateTime', 'N/A')}",
    ]
    if metadata.get("deletionTimestamp"):
        lines.append(f"  Deleting since: {metadata['deletionTimestamp']}")

    service = relation.get("service")
    if service:
        lines.append(f"  Service: {service.get('type')} {service.get('clusterIP')}")
        for port in service.get("ports") or []:
            service_port = port.get("servicePort", {})
            health = "healthy" if port.get("health") else "unreachable"
            lines.append(
                f"    {service_port.get('protocol', 'TCP')}/{service_port.get('port')}: {health}"
            )
    for member in relation.get("endpoint") or []:
        lines.append(
            f"  Endpoint: {member.get('podName')} {member.get('podIP')} on {member.get('nodeName')}"
        )
    for rule in relation.get("ingress") or []:
        lines.append(f"  Ingress: http://{rule.get('host')}/")
    if relation.get("pvc"):
        lines.append(f"  PVC: {relation['pvc'].get('phase', 'Unknown')}")
    return lines


def cmd_get(args, store=None):
    """Get Unit status."""
    store = _store(store)
    try:
        unit = store.get_unit(args.namespace, args.name)
    except StoreError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)

    if unit is None:
        print(f"✗ Unit '{args.name}' not found", file=sys.stderr)
        sys.exit(1)

    if args.output == "json":
        print(json.dumps(unit, indent=2))
    else:
        print("\n".join(describe_unit(unit)))


def cmd_list(args, store=None):
    """List Units."""
    store = _store(store)
    try:
        items = store.list_units(args.namespace)
    except StoreError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not items:
        print("No Units found.")
        return

    print(f"{'NAME':<30} {'NAMESPACE':<20} {'CATEGORY':<12} {'READY':<8} {'SELECTOR':<20}")
    print("-" * 90)

    for item in items:
        metadata = item.get("metadata", {})
        spec = item.get("spec", {})
        status = item.get("status", {})

        name = metadata.get("name", "N/A")
        namespace = metadata.get("namespace", "N/A")
        category = spec.get("category", "N/A")
        ready = f"{workload_status(status).get('readyReplicas', 0)}/{status.get('replicas', 0)}"
        selector = status.get("selector", "")

        print(f"{name:<30} {namespace:<20} {category:<12} {ready:<8} {selector:<20}")


def cmd_delete(args, store=None):
    """Delete a Unit. Owned resources are garbage-collected with it."""
    store = _store(store)
    try:
        deleted = store.delete_unit(args.namespace, args.name)
    except StoreError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not deleted:
        print(f"✗ Unit '{args.name}' not found", file=sys.stderr)
        sys.exit(1)
    print(f"✓ Unit '{args.name}' deleted")


def cmd_watch(args, store=None, sleep=time.sleep):
    """Watch Unit status."""
    store = _store(store)

    print(f"Watching Unit '{args.name}' (Ctrl+C to stop)...")
    print()

    try:
        while True:
            try:
                unit = store.get_unit(args.namespace, args.name)
            except StoreError as e:
                print(f"\n✗ Error: {e}", file=sys.stderr)
                break

            if unit is None:
                print(f"\n✗ Unit '{args.name}' not found", file=sys.stderr)
                break

            status = unit.get("status", {})
            ready = workload_status(status).get("readyReplicas", 0)
            print(
                f"\r[{ready}/{status.get('replicas', 0)} ready] "
                f"updated {status.get('lastUpdateTime', 'never')}",
                end="",
                flush=True,
            )
            sleep(args.interval)

    except KeyboardInterrupt:
        print("\nStopped watching.")


def build_parser():
    parser = argparse.ArgumentParser(
        description="Unit CLI - Manage Unit resources like native K8s resources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a stateless unit exposed on port 80 at web.example.com
  %(prog)s create web --image nginx:1.25 --container-port 80 --service-port 80 --domain web.example.com

  # Create a stateful unit with a 5Gi claim
  %(prog)s create db --category StatefulSet --image postgres:16 --storage-size 5Gi

  # Get unit details
  %(prog)s get web

  # List all units
  %(prog)s list

  # Watch unit status
  %(prog)s watch web

  # Delete unit (owned resources are garbage-collected)
  %(prog)s delete web
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Create command
    create_parser = subparsers.add_parser("create", help="Create a Unit")
    create_parser.add_argument("name", help="Unit name")
    create_parser.add_argument(
        "--namespace", "-n", default="default", help="Kubernetes namespace"
    )
    create_parser.add_argument(
        "--category",
        choices=crd.CATEGORIES,
        default=crd.CATEGORY_DEPLOYMENT,
        help="Workload kind (default: Deployment)",
    )
    create_parser.add_argument(
        "--image", default="nginx:latest", help="Container image (default: nginx:latest)"
    )
    create_parser.add_argument(
        "--replicas", type=int, default=1, help="Number of replicas (default: 1)"
    )
    create_parser.add_argument("--container-port", type=int, help="Port the container listens on")
    create_parser.add_argument("--service-port", type=int, help="Expose the unit with a Service on this port")
    create_parser.add_argument(
        "--domain", action="append", help="Route this domain to the unit (repeatable)"
    )
    create_parser.add_argument("--storage-size", help="Request a PVC of this size (e.g. 1Gi)")
    create_parser.add_argument("--storage-class", help="Storage class for the PVC")
    create_parser.set_defaults(func=cmd_create)

    # Get command
    get_parser = subparsers.add_parser("get", help="Get Unit status")
    get_parser.add_argument("name", help="Unit name")
    get_parser.add_argument(
        "--namespace", "-n", default="default", help="Kubernetes namespace"
    )
    get_parser.add_argument(
        "--output", "-o", choices=["json", "wide"], default="wide", help="Output format"
    )
    get_parser.set_defaults(func=cmd_get)

    # List command
    list_parser = subparsers.add_parser("list", help="List Units")
    list_parser.add_argument(
        "--namespace", "-n", help="Filter by namespace (all namespaces if not specified)"
    )
    list_parser.set_defaults(func=cmd_list)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Watch Unit status")
    watch_parser.add_argument("name", help="Unit name")
    watch_parser.add_argument(
        "--namespace", "-n", default="default", help="Kubernetes namespace"
    )
    watch_parser.add_argument(
        "--interval", type=float, default=2.0, help="Seconds between polls (default: 2)"
    )
    watch_parser.set_defaults(func=cmd_watch)

    # Delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a Unit")
    delete_parser.add_argument("name", help="Unit name")
    delete_parser.add_argument(
        "--namespace", "-n", default="default", help="Kubernetes namespace"
    )
    delete_parser.set_defaults(func=cmd_delete)

    return parser


def main(argv=None):
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
