from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Generic, Protocol, TypeVar, runtime_checkable

from sample_datasource.contracts.plugin import DataSourceInstanceSettings, PluginContext, _EPOCH
from sample_datasource.utils.logger import get_logger, log_exception, log_instance


@runtime_checkable
class Disposable(Protocol):
    def dispose(self) -> None:
        ...


T = TypeVar("T")

InstanceFactory = Callable[[PluginContext], T]


def instance_key(ctx: PluginContext) -> str:
    """Datasource identity when present, otherwise the plugin itself."""
    ds = ctx.datasource_instance_settings
    if ds is not None:
        return f"ds:{ds.id}"
    return f"plugin:{ctx.plugin_id}"


def _updated(ctx: PluginContext) -> datetime:
    ds: DataSourceInstanceSettings | None = ctx.datasource_instance_settings
    return ds.updated if ds is not None else _EPOCH


@dataclass(frozen=True)
class _Cached(Generic[T]):
    instance: T
    updated: datetime


class InstanceManager(Generic[T]):
    """
    Typed registry of live instances, one per configuration identity.

    Semantics:
      - Instances are created lazily on first `get`.
      - When the context's `updated` differs from the cached one, the old
        instance is disposed (exactly once) before the replacement is
        installed.
      - Callers must not keep an instance past the request that fetched it.
    """

    def __init__(self, factory: InstanceFactory[T], *, logger: logging.Logger | None = None):
        self._factory = factory
        self._cache: dict[str, _Cached[T]] = {}
        self._lock = threading.Lock()
        self._logger = logger or get_logger(f"sample_datasource.runtime.{self.__class__.__name__}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get(self, ctx: PluginContext) -> T:
        key = instance_key(ctx)
        updated = _updated(ctx)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None and cached.updated == updated:
                return cached.instance

            if cached is not None:
                log_instance(self._logger, "instance.settings_changed", key=key, updated=updated)
                self._dispose(key, cached.instance)
                del self._cache[key]

            instance = self._factory(ctx)
            self._cache[key] = _Cached(instance=instance, updated=updated)
            log_instance(
                self._logger,
                "instance.created",
                key=key,
                updated=updated,
                instance_type=type(instance).__name__,
            )
            return instance

    def dispose_all(self) -> None:
        with self._lock:
            cached = list(self._cache.items())
            self._cache.clear()
        # every instance is disposed even if an earlier one fails; the first error is re-raised
        errors: list[Exception] = []
        for key, entry in cached:
            try:
                self._dispose(key, entry.instance)
            except Exception as exc:
                errors.append(exc)
        if errors:
            raise errors[0]

    def _dispose(self, key: str, instance: T) -> None:
        if not isinstance(instance, Disposable):
            return
        try:
            instance.dispose()
        except Exception:
            log_exception(self._logger, "instance.dispose_error", key=key)
            raise
        log_instance(self._logger, "instance.disposed", key=key, instance_type=type(instance).__name__)
