from __future__ import annotations

import logging
import math
import os
import re
import shutil
import tempfile
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

import toml

from services.errors import ConfigReadError, ConfigWriteError, ValidationError


logger = logging.getLogger(__name__)


MAX_BACKUPS = 10
BACKUP_SUFFIX = ".backup"

_BARE_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


def loads(text: str) -> Dict[str, Any]:
    return toml.loads(text)


def format_key(key: str) -> str:
    key = str(key)
    if _BARE_KEY_RE.match(key):
        return key
    return _quote(key)


def _quote(s: str) -> str:
    out = []
    for ch in s:
        if ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif ch < " " or ch == "\x7f":
            out.append("\\u%04x" % ord(ch))
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


def format_value(value: Any) -> str:
    """Render one value as a TOML literal."""
    # bool first: it is a subclass of int.
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "nan"
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_value(v) for v in value if v is not None) + "]"
    if isinstance(value, Mapping):
        fields = _format_fields(value)
        if not fields:
            return "{}"
        return "{ " + ", ".join(fields) + " }"
    return _quote(str(value))


def _format_fields(mapping: Mapping[str, Any]) -> List[str]:
    return [f"{format_key(k)} = {format_value(v)}" for k, v in mapping.items() if v is not None]


def dumps(document: Mapping[str, Any]) -> str:
    """Serialize a configuration document.

    TOML does not allow plain keys after a table header, so every non-table
    top-level entry is written first and the tables follow, each in document
    order.
    """
    lines: List[str] = []
    for key, value in document.items():
        if value is None or isinstance(value, Mapping):
            continue
        lines.append(f"{format_key(key)} = {format_value(value)}")

    for key, value in document.items():
        if not isinstance(value, Mapping):
            continue
        lines.append("")
        lines.append(f"[{format_key(key)}]")
        lines.extend(_format_fields(value))

    return "\n".join(lines) + "\n"


def backup_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 timestamp with ':' and '.' replaced so it is filename-safe.

    Fixed width, so lexical order of backup names is chronological order.
    """
    ts = (now or datetime.now(timezone.utc)).isoformat(timespec="microseconds")
    return re.sub(r"[:.]", "-", ts)


class FrpcConfigStore:
    def __init__(
        self,
        config_path: str,
        *,
        enable_backups: bool = False,
        backup_dir: Optional[str] = None,
        max_backups: int = MAX_BACKUPS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config_path = config_path
        self.enable_backups = bool(enable_backups)
        self.backup_dir = backup_dir or os.path.dirname(os.path.abspath(config_path))
        self.max_backups = int(max_backups)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def backup_prefix(self) -> str:
        return os.path.basename(self.config_path) + "."

    def read(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                return loads(f.read())
        except (OSError, ValueError) as e:
            # toml.TomlDecodeError is a ValueError.
            raise ConfigReadError(f"Error reading FRPC config: {e}", cause=e) from e

    def write(self, document: Mapping[str, Any]) -> None:
        text = dumps(document)
        try:
            loads(text)
        except ValueError as e:
            # read() must be able to load whatever is written (TOML 0.5: no mixed-type arrays).
            raise ValidationError(f"Configuration cannot be stored as TOML: {e}", cause=e) from e

        try:
            if self.enable_backups:
                self._backup()
            self._atomic_write_file(self.config_path, text)
        except OSError as e:
            raise ConfigWriteError(f"Error writing FRPC config: {e}", cause=e) from e

    def list_backups(self) -> List[str]:
        """Backup file names, newest first."""
        try:
            names = os.listdir(self.backup_dir)
        except FileNotFoundError:
            return []
        prefix = self.backup_prefix
        return sorted(
            (n for n in names if n.startswith(prefix) and n.endswith(BACKUP_SUFFIX)),
            reverse=True,
        )

    def _backup(self) -> str:
        os.makedirs(self.backup_dir, exist_ok=True)
        name = f"{self.backup_prefix}{backup_timestamp(self._clock())}{BACKUP_SUFFIX}"
        backup_path = os.path.join(self.backup_dir, name)
        shutil.copyfile(self.config_path, backup_path)
        logger.info("Backed up %s to %s", self.config_path, backup_path)

        for stale in self.list_backups()[self.max_backups:]:
            os.unlink(os.path.join(self.backup_dir, stale))
            logger.debug("Removed old backup %s", stale)
        return backup_path

    def _atomic_write_file(self, path: str, content: str) -> None:
        # Write within the destination directory so os.replace is atomic on POSIX.
        d = os.path.dirname(os.path.abspath(path))
        tmp_path = ""
        try:
            with tempfile.NamedTemporaryFile(mode="w", encoding="utf-8", delete=False, dir=d, prefix=".tmp-") as f:
                tmp_path = f.name
                f.write(content)
            try:
                shutil.copymode(path, tmp_path)
            except OSError:
                pass
            os.replace(tmp_path, path)
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
