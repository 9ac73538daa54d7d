from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class DataSourceInstanceSettings:
    """
    Host-provided configuration of one datasource.

    Semantics:
      - `json_data` is the opaque settings object (parsed by the instance).
      - `updated` changes whenever the configuration is saved; the
        instance registry recreates the instance when it differs.
    """

    id: int
    uid: str = ""
    name: str = ""
    url: str = ""
    json_data: bytes | str | Mapping[str, Any] | None = None
    decrypted_secure_json_data: Mapping[str, str] = field(default_factory=dict)
    updated: datetime = _EPOCH

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "DataSourceInstanceSettings":
        updated = raw.get("updated")
        return cls(
            id=int(raw["id"]),
            uid=str(raw.get("uid", "")),
            name=str(raw.get("name", "")),
            url=str(raw.get("url", "")),
            json_data=raw.get("jsonData"),
            decrypted_secure_json_data=dict(raw.get("decryptedSecureJsonData") or {}),
            updated=_parse_instant(updated) if updated is not None else _EPOCH,
        )


@dataclass(frozen=True)
class PluginContext:
    """Identity of the caller and the datasource a request targets."""

    org_id: int = 0
    plugin_id: str = ""
    user: str | None = None
    datasource_instance_settings: DataSourceInstanceSettings | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "PluginContext":
        ds = raw.get("dataSourceInstanceSettings")
        return cls(
            org_id=int(raw.get("orgId", 0)),
            plugin_id=str(raw.get("pluginId", "")),
            user=raw.get("user"),
            datasource_instance_settings=DataSourceInstanceSettings.from_dict(ds) if ds else None,
        )


def _parse_instant(x: Any) -> datetime:
    """Epoch ms int/float or ISO-8601 string -> aware UTC datetime."""
    if isinstance(x, bool):
        raise ValueError("invalid instant type: bool")
    if isinstance(x, (int, float)):
        return datetime.fromtimestamp(float(x) / 1000.0, tz=timezone.utc)
    if isinstance(x, str):
        dt = datetime.fromisoformat(x.replace("Z", "+00:00"))
        return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)
    if isinstance(x, datetime):
        return x if x.tzinfo is not None else x.replace(tzinfo=timezone.utc)
    raise ValueError(f"invalid instant: {x!r}")
