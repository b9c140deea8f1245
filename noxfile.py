"""Nox session definitions mirroring repository quality gates."""

from __future__ import annotations

import nox

nox.options.sessions = ["lint", "typecheck", "tests"]


@nox.session
def lint(session: nox.Session) -> None:
    """Run lint and formatting checks without mutating files."""
    session.install("ruff")
    session.run("ruff", "check", ".")
    session.run("ruff", "format", "--check", ".")


@nox.session(name="lint-fix")
def lint_fix(session: nox.Session) -> None:
    """Apply ruff fixes and formatting."""
    session.install("ruff")
    session.run("ruff", "check", "--fix", ".")
    session.run("ruff", "format", ".")


@nox.session
def typecheck(session: nox.Session) -> None:
    """Run mypy on the source package with project dependencies installed."""
    session.install("mypy")
    session.install("-e", ".")
    session.run("mypy", "src")


@nox.session
def tests(session: nox.Session) -> None:
    """Run pytest against the repository test suite."""
    session.install("-e", ".[test]")
    session.run("pytest", *session.posargs)


@nox.session(name="vlc-smoke")
def vlc_smoke(session: nox.Session) -> None:
    """Play a real file through libVLC: nox -s vlc-smoke -- PATH."""
    if not session.posargs:
        session.error("Usage: nox -s vlc-smoke -- PATH")
    session.install("-e", ".")
    session.run("python", "tools/vlc_smoke.py", *session.posargs)
