"""Version checks for the command-line tool itself."""

from __future__ import annotations

import sys

from semver import Version


def _parse(ver):
    """Parse a strict semantic version, or return None when it is not one."""
    try:
        return Version.parse(ver)
    except (ValueError, TypeError):
        return None


def is_valid_version(ver):
    """Return True when ver is a strict semantic version such as ``1.2.3``."""
    return _parse(ver) is not None


def confirm_user_action(action, stdin=None, stdout=None):
    """Ask a yes/no question; return True only when the answer is exactly ``y``.

    Any answer other than ``y`` or ``n`` is reported as invalid and counts as no.
    """
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    stdout.write(f"{action} (y/n): ")
    stdout.flush()
    try:
        answer = stdin.readline()
    except (OSError, ValueError):
        answer = ""
    if answer not in ("y\n", "n\n"):
        stdout.write("Invalid input\n")
        return False
    return answer == "y\n"


def is_latest(current, latest):
    """Compare the running version with the latest released one.

    Returns ``(True, "")`` when no update is needed or none can be determined,
    and ``(False, <latest version>)`` when a newer release exists. An empty
    current version means a local build, for which any release is newer.
    """
    if current and not is_valid_version(current):
        return True, ""
    if latest is None:
        print("failed getting latest info")
        return True, ""
    latest_text = str(latest)
    if latest_text.startswith("v"):
        latest_text = latest_text[1:]
    latest_version = _parse(latest_text)
    if latest_version is None:
        print("failed getting latest info")
        return True, ""
    if current and latest_version <= Version.parse(current):
        print("current version is the latest")
        return True, ""
    return False, str(latest_version)