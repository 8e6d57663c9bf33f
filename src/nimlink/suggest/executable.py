"""Locate the nimsuggest executable and detect its version."""

import logging
import os
import re
import shutil
import subprocess
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r".+Version\s([\d.]+)\s\(.+")


def binary_name(name: str) -> str:
    """Add the platform executable suffix."""
    if sys.platform == "win32":
        return name + ".exe"
    return name


def find_nimsuggest(configured: list[str] | None = None) -> list[str] | None:
    """Resolve the command used to launch nimsuggest.

    Resolution order:
    1. The configured command (its first element resolved on PATH if bare)
    2. nimsuggest next to the nim compiler found on PATH
    3. nimsuggest on PATH

    Returns:
        The command as a list, or None if nimsuggest cannot be found.
    """
    if configured:
        executable = configured[0]
        if Path(executable).is_absolute() or os.path.sep in executable:
            return list(configured)
        found = shutil.which(executable)
        if found:
            return [found, *configured[1:]]
        logger.warning(f"Configured nimsuggest not found on PATH: {executable}")
        return None

    nim = shutil.which(binary_name("nim"))
    if nim:
        candidate = Path(nim).resolve().parent / binary_name("nimsuggest")
        if candidate.exists():
            return [str(candidate)]

    found = shutil.which(binary_name("nimsuggest"))
    if found:
        return [found]
    return None


def parse_version(output: str) -> str | None:
    """Extract the version from ``nimsuggest --version`` output."""
    match = _VERSION_RE.search(output)
    return match.group(1) if match else None


def detect_version(command: list[str], timeout: float = 10.0) -> str | None:
    """Run ``nimsuggest --version`` and return the version string."""
    try:
        result = subprocess.run(
            [*command, "--version"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"Could not run {command[0]} --version: {e}")
        return None

    version = parse_version(result.stdout + result.stderr)
    logger.debug(f"nimsuggest version: {version}")
    return version


def is_version_at_least(current: str | None, required: str) -> bool:
    """Compare dotted numeric versions. An unknown version never matches."""
    if not current:
        return False
    current_parts = current.split(".")
    required_parts = required.split(".")
    for have, want in zip(current_parts, required_parts, strict=False):
        try:
            diff = int(have) - int(want)
        except ValueError:
            return False
        if diff != 0:
            return diff > 0
    return True
