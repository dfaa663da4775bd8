import pytest

from conftest import make_unit
from unit_operator.crd import FINALIZER
from unit_operator.errors import HookError
from unit_operator.finalizer import (
    ensure_finalizer,
    handle_termination,
    has_finalizer,
    is_terminating,
)


def test_is_terminating():
    assert not is_terminating(make_unit())
    assert is_terminating(make_unit(deletionTimestamp="2026-10-17T10:00:00Z"))


def test_ensure_finalizer_adds_token_and_persists(store, log):
    unit = store.put_unit(make_unit(finalizers=["other/finalizer"]))

    assert ensure_finalizer(unit, store, log, FINALIZER) is True

    stored = store.units[("default", "web")]
    assert stored["metadata"]["finalizers"] == ["other/finalizer", FINALIZER]
    assert unit["metadata"]["resourceVersion"] == stored["metadata"]["resourceVersion"]


def test_ensure_finalizer_is_idempotent(store, log):
    unit = store.put_unit(make_unit(finalizers=[FINALIZER]))

    assert ensure_finalizer(unit, store, log, FINALIZER) is False
    assert store.count("update_unit") == 0


def test_termination_removes_token_after_hook(store, log):
    unit = store.put_unit(
        make_unit(deletionTimestamp="2026-10-17T10:00:00Z", finalizers=[FINALIZER, "other/finalizer"])
    )
    seen = []

    def hook(unit, logger):
        seen.append(has_finalizer(unit, FINALIZER))

    assert handle_termination(unit, store, log, FINALIZER, hook=hook) is True
    assert seen == [True]
    assert store.units[("default", "web")]["metadata"]["finalizers"] == ["other/finalizer"]


def test_termination_purges_unit_when_last_token_removed(store, log):
    unit = store.put_unit(make_unit(deletionTimestamp="2026-10-17T10:00:00Z", finalizers=[FINALIZER]))

    handle_termination(unit, store, log, FINALIZER)

    assert ("default", "web") not in store.units


def test_termination_hook_failure_keeps_token(store, log):
    unit = store.put_unit(make_unit(deletionTimestamp="2026-10-17T10:00:00Z", finalizers=[FINALIZER]))

    def hook(unit, logger):
        raise RuntimeError("external cleanup unavailable")

    with pytest.raises(HookError):
        handle_termination(unit, store, log, FINALIZER, hook=hook)

    assert store.units[("default", "web")]["metadata"]["finalizers"] == [FINALIZER]
    assert store.count("update_unit") == 0


def test_termination_without_token_is_noop(store, log):
    unit = store.put_unit(make_unit(deletionTimestamp="2026-10-17T10:00:00Z", finalizers=["other/finalizer"]))

    assert handle_termination(unit, store, log, FINALIZER) is False
    assert store.count("update_unit") == 0
