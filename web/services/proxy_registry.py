from __future__ import annotations

import logging
import re
import threading
from typing import Any, Dict, Mapping, Optional

from services.errors import ConflictError, NotFoundError, ValidationError
from services.frpc_config import FrpcConfigStore


logger = logging.getLogger(__name__)


# Top-level frpc settings that are never proxies, even when table-valued.
RESERVED_CONFIG_KEYS = frozenset(
    [
        "serverAddr", "serverPort", "auth", "user", "token", "log", "transport",
        "loginFailExit", "protocol", "tls", "dnsServer", "start", "adminAddr",
        "adminPort", "adminUser", "adminPwd", "assetsDir", "poolCount",
        "tcpMux", "tcpMuxKeepaliveInterval", "logFile", "logLevel", "logMaxDays",
    ]
)

PROXY_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")

# Proxy fields as written by current frpc (camelCase) and by older configs (snake_case).
ENTRY_FIELD_ALIASES = {
    "localIP": "local_ip",
    "localPort": "local_port",
    "remotePort": "remote_port",
    "customDomains": "custom_domains",
}

# Serializes read-modify-write cycles within this process.
_write_lock = threading.Lock()


def is_reserved_key(name: str) -> bool:
    return name in RESERVED_CONFIG_KEYS


def is_proxy_entry(name: str, value: Any) -> bool:
    if is_reserved_key(name):
        return False
    return isinstance(value, Mapping) and bool(value.get("type"))


def entry_field(entry: Mapping[str, Any], field: str) -> Any:
    """Read a proxy field under either naming convention (camelCase wins)."""
    value = entry.get(field)
    if value in (None, ""):
        alias = ENTRY_FIELD_ALIASES.get(field)
        if alias:
            value = entry.get(alias)
    return value


def describe_proxy(name: str, entry: Mapping[str, Any]) -> str:
    local_ip = entry_field(entry, "localIP") or "127.0.0.1"
    local_port = entry_field(entry, "localPort")
    remote_port = entry_field(entry, "remotePort")
    domains = entry_field(entry, "customDomains")

    parts = [f"{name} ({entry.get('type') or '?'}"]
    if local_port is not None:
        parts.append(f" {local_ip}:{local_port}")
    if remote_port is not None:
        parts.append(f" -> :{remote_port}")
    if domains:
        if isinstance(domains, (list, tuple)):
            domains = ",".join(str(d) for d in domains)
        parts.append(f" [{domains}]")
    parts.append(")")
    return "".join(parts)


def _validate_entry(entry: Any) -> Dict[str, Any]:
    if not isinstance(entry, Mapping):
        raise ValidationError("Proxy configuration must be an object")
    if not entry.get("type"):
        raise ValidationError("Proxy configuration requires a type")
    return dict(entry)


class ProxyRegistry:
    def __init__(self, store: FrpcConfigStore, lock: Optional[threading.Lock] = None):
        self.store = store
        self._lock = lock or _write_lock

    def list_proxies(self) -> Dict[str, Any]:
        document = self.store.read()
        return {name: value for name, value in document.items() if is_proxy_entry(name, value)}

    def get_proxy(self, name: str) -> Any:
        document = self.store.read()
        if name not in document:
            raise NotFoundError("Proxy not found")
        return document[name]

    def create_proxy(self, name: str, entry: Any) -> None:
        if not name or not entry:
            raise ValidationError("Name and proxy configuration are required")
        if not isinstance(name, str) or not PROXY_NAME_RE.match(name):
            raise ValidationError(
                "Invalid proxy name. Use only alphanumeric characters, hyphens, and underscores."
            )
        if is_reserved_key(name):
            raise ValidationError("Cannot use reserved configuration key as proxy name")
        entry = _validate_entry(entry)

        with self._lock:
            document = self.store.read()
            if name in document:
                raise ConflictError("Proxy with this name already exists")
            document[name] = entry
            self.store.write(document)
        logger.info("Created proxy %s", describe_proxy(name, entry))

    def update_proxy(self, name: str, entry: Any) -> None:
        if not entry:
            raise ValidationError("Proxy configuration is required")
        if is_reserved_key(name):
            raise ValidationError("Cannot modify reserved configuration key")
        entry = _validate_entry(entry)

        with self._lock:
            document = self.store.read()
            if name not in document:
                raise NotFoundError("Proxy not found")
            if not is_proxy_entry(name, document[name]):
                raise ValidationError("Cannot modify non-proxy configuration")
            document[name] = entry
            self.store.write(document)
        logger.info("Updated proxy %s", describe_proxy(name, entry))

    def delete_proxy(self, name: str) -> None:
        if is_reserved_key(name):
            raise ValidationError("Cannot delete reserved configuration key")

        with self._lock:
            document = self.store.read()
            if name not in document:
                raise NotFoundError("Proxy not found")
            if not is_proxy_entry(name, document[name]):
                raise ValidationError("Cannot delete non-proxy configuration")
            del document[name]
            self.store.write(document)
        logger.info("Deleted proxy %s", name)
