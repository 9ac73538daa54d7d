from __future__ import annotations

from datetime import datetime, timezone

import pytest

from sample_datasource.contracts.plugin import PluginContext
from sample_datasource.runtime.instances import InstanceManager, instance_key
from tests.helpers.fakes_stream import make_context

T1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
T2 = datetime(2024, 1, 2, tzinfo=timezone.utc)


class _Instance:
    def __init__(self, ctx: PluginContext):
        self.ctx = ctx
        self.dispose_calls = 0

    def dispose(self) -> None:
        self.dispose_calls += 1


class _Plain:
    def __init__(self, ctx: PluginContext):
        self.ctx = ctx


def test_instance_is_created_lazily_and_reused():
    created: list[_Instance] = []

    def factory(ctx):
        inst = _Instance(ctx)
        created.append(inst)
        return inst

    mgr: InstanceManager[_Instance] = InstanceManager(factory)
    assert len(mgr) == 0
    a = mgr.get(make_context(1, updated=T1))
    b = mgr.get(make_context(1, updated=T1))
    assert a is b
    assert len(created) == 1


def test_settings_change_disposes_old_instance_once():
    mgr: InstanceManager[_Instance] = InstanceManager(_Instance)
    old = mgr.get(make_context(1, updated=T1))
    new = mgr.get(make_context(1, updated=T2))
    again = mgr.get(make_context(1, updated=T2))

    assert new is not old
    assert again is new
    assert old.dispose_calls == 1
    assert new.dispose_calls == 0


def test_distinct_datasources_get_distinct_instances():
    mgr: InstanceManager[_Instance] = InstanceManager(_Instance)
    a = mgr.get(make_context(1))
    b = mgr.get(make_context(2))
    assert a is not b
    assert len(mgr) == 2


def test_dispose_all_disposes_each_instance():
    mgr: InstanceManager[_Instance] = InstanceManager(_Instance)
    a = mgr.get(make_context(1))
    b = mgr.get(make_context(2))
    mgr.dispose_all()
    assert (a.dispose_calls, b.dispose_calls) == (1, 1)
    assert len(mgr) == 0
    mgr.dispose_all()
    assert (a.dispose_calls, b.dispose_calls) == (1, 1)


def test_non_disposable_instances_are_replaced_silently():
    mgr: InstanceManager[_Plain] = InstanceManager(_Plain)
    a = mgr.get(make_context(1, updated=T1))
    b = mgr.get(make_context(1, updated=T2))
    assert a is not b


def test_instance_key_falls_back_to_plugin_id():
    assert instance_key(make_context(5)) == "ds:5"
    assert instance_key(PluginContext(plugin_id="app-plugin")) == "plugin:app-plugin"


class _BrokenInstance(_Instance):
    def dispose(self) -> None:
        super().dispose()
        raise RuntimeError("dispose failed")


def test_dispose_all_continues_past_a_failing_instance():
    def factory(ctx):
        ds = ctx.datasource_instance_settings
        return _BrokenInstance(ctx) if ds.id == 1 else _Instance(ctx)

    mgr = InstanceManager(factory)
    broken = mgr.get(make_context(1))
    a = mgr.get(make_context(2))
    b = mgr.get(make_context(3))

    with pytest.raises(RuntimeError, match="dispose failed"):
        mgr.dispose_all()
    assert (broken.dispose_calls, a.dispose_calls, b.dispose_calls) == (1, 1, 1)
    assert len(mgr) == 0
