from __future__ import annotations

import logging
import re
from subprocess import TimeoutExpired, run
from typing import Any, List, Tuple

from services.logutil import log_exception_throttled


logger = logging.getLogger(__name__)


SERVICE_NAME_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")
DEFAULT_TIMEOUT_SECONDS = 15.0


def validate_service_name(name: str) -> bool:
    return bool(name) and SERVICE_NAME_RE.match(name) is not None


class ServiceController:
    """Restart and probe the frpc systemd unit."""

    def __init__(self, service_name: str = "frpc", *, use_sudo: bool = True, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.service_name = service_name
        self.use_sudo = bool(use_sudo)
        self.timeout = float(timeout)

    def _systemctl(self, *args: str, privileged: bool = False) -> List[str]:
        argv = ["systemctl", *args]
        if privileged and self.use_sudo:
            argv = ["sudo", "-n", *argv]
        return argv

    def _decode_completed(self, p: Any) -> str:
        out = getattr(p, "stdout", b"")
        err = getattr(p, "stderr", b"")
        if isinstance(out, bytes):
            out_s = out.decode("utf-8", errors="replace")
        else:
            out_s = str(out or "")
        if isinstance(err, bytes):
            err_s = err.decode("utf-8", errors="replace")
        else:
            err_s = str(err or "")
        if out_s and err_s:
            return (out_s + "\n" + err_s).strip()
        return (out_s or err_s).strip()

    def restart(self) -> Tuple[bool, str]:
        if not validate_service_name(self.service_name):
            return False, "Invalid service name"
        argv = self._systemctl("restart", self.service_name, privileged=True)
        try:
            p = run(argv, capture_output=True, timeout=self.timeout)
        except TimeoutExpired:
            logger.error("%s timed out after %.0fs", " ".join(argv), self.timeout)
            return False, f"Timed out after {self.timeout:.0f}s"
        except OSError as e:
            logger.error("Could not run %s: %s", " ".join(argv), e)
            return False, str(e)

        if p.returncode != 0:
            details = self._decode_completed(p) or f"systemctl exited with status {p.returncode}"
            logger.warning("Restart of %s failed: %s", self.service_name, details)
            return False, details
        logger.info("Restarted service %s", self.service_name)
        return True, self._decode_completed(p) or f"{self.service_name} restarted."

    def status(self) -> bool:
        # Best-effort: any failure reads as inactive.
        if not validate_service_name(self.service_name):
            return False
        try:
            p = run(
                self._systemctl("is-active", self.service_name),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except Exception:
            log_exception_throttled(
                logger,
                "servicectl.status",
                self.service_name,
                interval_seconds=300.0,
                message="systemctl is-active %s failed",
                level=logging.WARNING,
            )
            return False
        return (p.stdout or "").strip() == "active"
