"""
Execution context — the values one pipeline run threads between steps.

A fresh context is created at the start of every run and dropped at the
end.  Nothing persists across runs: re-running re-resolves upstream
versions and re-detects host facts, because upstream may have moved.

Rules:
    - Write-once per key.  A second ``set`` of the same key raises
      ``ContextError``; a step owns the keys it writes.
    - ``require`` reads a key that an earlier step must have written.
      Reading an unwritten key is a wiring bug, reported as ``ContextError``.
    - ``obtain`` computes a step's own value on first use and memoises it,
      so a precondition and its action share one resolution per run.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator

from nodestrap.core.errors import ContextError

logger = logging.getLogger(__name__)

# ── Well-known keys ─────────────────────────────────────────────

CONTAINERD_VERSION = "resolved_container_runtime_version"
CONTAINERD_INSTALLED = "container_runtime_installed"
CONTAINERD_CONFIG_CHANGED = "container_runtime_config_changed"
RUNC_VERSION = "resolved_low_level_runtime_version"
CNI_VERSION = "resolved_network_plugins_version"
KUBERNETES_STABLE = "resolved_kubernetes_stable_version"
KUBERNETES_CHANNEL = "kubernetes_channel"
CLIENT_VERSION = "detected_client_version"
CHOSEN_HOSTNAME = "chosen_hostname"
DETECTED_INTERFACE = "detected_interface"
NETWORK_CONFIG_PATH = "network_config_path"
NETWORK_CONFIG_CHANGED = "network_config_changed"
HAPROXY_CONFIG_CHANGED = "haproxy_config_changed"

_MISSING = object()


class ExecutionContext:
    """Write-once key/value store shared by the steps of one run."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        if key in self._values:
            raise ContextError(
                f"Context key '{key}' already written "
                f"(existing={self._values[key]!r}, new={value!r})"
            )
        logger.debug("context: %s = %r", key, value)
        self._values[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def require(self, key: str) -> Any:
        value = self._values.get(key, _MISSING)
        if value is _MISSING:
            raise ContextError(f"Context key '{key}' has not been written by an earlier step")
        return value

    def obtain(self, key: str, producer: Callable[[], Any]) -> Any:
        """Return the value under ``key``, producing and storing it on first use."""
        if key not in self._values:
            self.set(key, producer())
        return self._values[key]

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)
