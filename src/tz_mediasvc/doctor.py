"""Runtime diagnostics for decoder readiness and log output."""

from __future__ import annotations

import importlib
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from tz_mediasvc.paths import log_dir

DoctorStatus = Literal["ok", "missing", "error"]


@dataclass(frozen=True)
class DoctorCheck:
    """One environment readiness check result."""

    name: str
    status: DoctorStatus
    required: bool
    detail: str
    hint: str | None = None


@dataclass(frozen=True)
class DoctorReport:
    """Collection of doctor checks and derived process exit contract."""

    decoder: str
    checks: list[DoctorCheck]

    @property
    def exit_code(self) -> int:
        """Return non-zero when any required check failed or is missing."""
        for check in self.checks:
            if check.required and check.status != "ok":
                return 2
        return 0


def run_doctor(decoder: str) -> DoctorReport:
    """Run diagnostics for the selected decoder."""
    checks = [
        probe_vlc(required=decoder == "vlc"),
        probe_log_dir(),
    ]
    return DoctorReport(decoder=decoder, checks=checks)


def render_report(report: DoctorReport) -> str:
    lines = [f"tz-mediasvc doctor (decoder={report.decoder})", ""]
    for check in report.checks:
        state = _status_token(check.status)
        req = "required" if check.required else "optional"
        lines.append(f"{state} {check.name:<11} [{req}] {check.detail}")
        if check.hint:
            lines.append(f"      hint: {check.hint}")
    lines.append("")
    lines.append("Result: OK" if report.exit_code == 0 else "Result: FAIL")
    return "\n".join(lines)


def probe_vlc(*, required: bool) -> DoctorCheck:
    """Verify python-vlc import and that libVLC can build a media player."""
    try:
        vlc = importlib.import_module("vlc")
    except Exception as exc:
        return DoctorCheck(
            name="vlc/libvlc",
            status="missing",
            required=required,
            detail=f"python-vlc import failed ({exc.__class__.__name__})",
            hint="pip install python-vlc and install VLC/libVLC.",
        )
    version = getattr(vlc, "__version__", "unknown")
    try:
        instance = vlc.Instance()
        player = instance.media_player_new()
    except Exception as exc:
        return DoctorCheck(
            name="vlc/libvlc",
            status="error",
            required=required,
            detail=(
                f"python-vlc {version}; libVLC runtime unavailable "
                f"({exc.__class__.__name__})"
            ),
            hint="Install VLC/libVLC and verify runtime library search path.",
        )
    release = getattr(player, "release", None)
    if callable(release):
        release()
    return DoctorCheck(
        name="vlc/libvlc",
        status="ok",
        required=required,
        detail=f"python-vlc {version}; libVLC {_libvlc_version(vlc)}",
    )


def probe_log_dir(path: Path | None = None) -> DoctorCheck:
    """Verify the log directory exists and accepts new files."""
    try:
        target = path if path is not None else log_dir()
        target.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=target, prefix=".doctor-"):
            pass
    except OSError as exc:
        return DoctorCheck(
            name="log-dir",
            status="error",
            required=False,
            detail=f"not writable ({exc.__class__.__name__})",
            hint="Pass --log-file with a writable location.",
        )
    return DoctorCheck(name="log-dir", status="ok", required=False, detail=str(target))


def _status_token(status: DoctorStatus) -> str:
    if status == "ok":
        return "[OK]"
    if status == "missing":
        return "[MISS]"
    return "[ERR]"


def _libvlc_version(vlc: object) -> str:
    """Best-effort extraction of libVLC runtime version string."""
    getter = getattr(vlc, "libvlc_get_version", None)
    if not callable(getter):
        return "detected"
    try:
        release = getter()
    except Exception:
        return "detected"
    if isinstance(release, bytes):
        return release.decode("utf-8", errors="replace")
    return str(release) if release else "detected"
