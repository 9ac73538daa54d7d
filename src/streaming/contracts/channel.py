from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Scope = Literal["grafana", "plugin", "ds", "stream"]

SCOPE_GRAFANA: Scope = "grafana"
SCOPE_PLUGIN: Scope = "plugin"
SCOPE_DATASOURCE: Scope = "ds"
SCOPE_STREAM: Scope = "stream"

_SCOPES = {SCOPE_GRAFANA, SCOPE_PLUGIN, SCOPE_DATASOURCE, SCOPE_STREAM}

DATASOURCE_STREAM_PATH = "stream"


@dataclass(frozen=True)
class Channel:
    """
    Live routing identity: `<scope>/<namespace>/<path>`.

    Semantics:
      - `scope`     : who owns the channel (datasource, plugin, ...)
      - `namespace` : owner identity within the scope (datasource id)
      - `path`      : stream within the owner; may itself contain '/'

    Deterministic for a given owner; clients use the string form to
    correlate a subscription with its producer.
    """

    scope: Scope
    namespace: str
    path: str

    def __post_init__(self) -> None:
        if self.scope not in _SCOPES:
            raise ValueError(f"invalid channel scope: {self.scope!r}")
        if not self.namespace or not self.path:
            raise ValueError("channel namespace and path must be non-empty")

    def __str__(self) -> str:
        return f"{self.scope}/{self.namespace}/{self.path}"

    @classmethod
    def parse(cls, s: str) -> "Channel":
        parts = s.split("/", 2)
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"invalid channel {s!r}: expected '<scope>/<namespace>/<path>'")
        scope, namespace, path = parts
        return cls(scope=scope, namespace=namespace, path=path)  # type: ignore[arg-type]


def datasource_channel(datasource_id: int, path: str = DATASOURCE_STREAM_PATH) -> Channel:
    """Stream channel of one datasource instance, namespaced by its numeric id."""
    return Channel(scope=SCOPE_DATASOURCE, namespace=str(int(datasource_id)), path=path)
