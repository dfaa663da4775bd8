import kopf
import pytest

from conftest import make_unit
from unit_operator import crd, main
from unit_operator.errors import StoreError


@pytest.fixture
def operator_store(store, monkeypatch):
    monkeypatch.setattr(main, "_store", store)
    return store


def owner_ref(kind=crd.KIND, controller=True, name="web"):
    return {"apiVersion": crd.API_VERSION, "kind": kind, "name": name, "controller": controller}


def test_owner_unit():
    assert main.owner_unit([owner_ref()]) == "web"
    assert main.owner_unit([owner_ref(kind="ReplicaSet"), owner_ref(name="api")]) == "api"
    assert main.owner_unit([owner_ref(controller=False)]) is None
    assert main.owner_unit(None) is None


def test_is_owned_by_unit():
    assert main.is_owned_by_unit({"ownerReferences": [owner_ref()]})
    assert not main.is_owned_by_unit({"name": "orphan"})


def test_unit_handler_converges(operator_store, log):
    operator_store.put_unit(make_unit())

    assert main.unit_handler(name="web", namespace="default", logger=log) is None
    assert operator_store.stored("Deployment", "default", "web") is not None


def test_unit_handler_retries_on_store_failure(operator_store, log):
    operator_store.put_unit(make_unit())
    operator_store.failures[("create", "Deployment")] = StoreError("timeout", status=504)

    with pytest.raises(kopf.TemporaryError):
        main.unit_handler(name="web", namespace="default", logger=log)


def test_unit_handler_gives_up_on_invalid_spec(operator_store, log):
    operator_store.put_unit(make_unit(category="CronJob"))

    with pytest.raises(kopf.PermanentError):
        main.unit_handler(name="web", namespace="default", logger=log)


def test_deletion_releases_finalizer(operator_store, log):
    operator_store.put_unit(make_unit(deletionTimestamp="2026-10-17T10:00:00Z", finalizers=[crd.FINALIZER]))

    main.unit_deletion(name="web", namespace="default", logger=log)

    assert ("default", "web") not in operator_store.units


def test_owned_resource_event_reconciles_owner(operator_store, log):
    operator_store.put_unit(make_unit())
    meta = {"name": "web", "ownerReferences": [owner_ref()]}

    main.owned_resource_event(meta=meta, namespace="default", logger=log)

    assert operator_store.count("get_unit") == 1
    assert operator_store.stored("Deployment", "default", "web") is not None


def test_owned_resource_event_ignores_foreign_objects(operator_store, log):
    main.owned_resource_event(meta={"name": "other"}, namespace="default", logger=log)
    assert operator_store.log == []


def test_same_key_shares_a_lock():
    assert main._lock_for("default", "web") is main._lock_for("default", "web")
    assert main._lock_for("default", "web") is not main._lock_for("default", "api")


def test_deletion_retries_when_hook_fails(operator_store, log, monkeypatch):
    operator_store.put_unit(make_unit(deletionTimestamp="2026-10-17T10:00:00Z", finalizers=[crd.FINALIZER]))

    def failing_hook(unit, logger):
        raise RuntimeError("backup still running")

    monkeypatch.setattr("unit_operator.finalizer.pre_delete", failing_hook)

    with pytest.raises(kopf.TemporaryError):
        main.unit_deletion(name="web", namespace="default", logger=log)
    assert operator_store.units[("default", "web")]["metadata"]["finalizers"] == [crd.FINALIZER]


def test_deletion_retries_on_finalizer_conflict(operator_store, log):
    operator_store.put_unit(make_unit(deletionTimestamp="2026-10-17T10:00:00Z", finalizers=[crd.FINALIZER]))
    operator_store.failures[("update_unit", crd.KIND)] = StoreError("conflict", status=409)

    with pytest.raises(kopf.TemporaryError):
        main.unit_deletion(name="web", namespace="default", logger=log)


def test_deletion_drops_the_unit_lock(operator_store, log):
    operator_store.put_unit(make_unit(deletionTimestamp="2026-10-17T10:00:00Z", finalizers=[crd.FINALIZER]))
    main._lock_for("default", "web")

    main.unit_deletion(name="web", namespace="default", logger=log)

    assert ("default", "web") not in main._locks


def test_reconcile_of_missing_unit_drops_its_lock(operator_store, log):
    main.run_reconcile("default", "gone", log)
    assert ("default", "gone") not in main._locks
