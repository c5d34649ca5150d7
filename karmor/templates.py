"""Local cache of policy templates and conversion into a single rule file."""

from __future__ import annotations

import os
import shutil
import sys
import zipfile

import yaml

from .image import sanitize_archive_path
from .rules import load_rules

_CACHE_SUBDIR = ".cache/karmor/"
_METADATA = "metadata.yaml"
_RULES_FILE = "rules.yaml"


def user_home():
    """Return the user's home directory as given by the environment."""
    if sys.platform == "win32":
        home = os.environ.get("HOMEDRIVE", "") + os.environ.get("HOMEPATH", "")
        if not home:
            home = os.environ.get("USERPROFILE", "")
        return home
    return os.environ.get("HOME", "")


def cache_path():
    """Return the directory where policy templates are cached, with a trailing slash."""
    return f"{user_home()}/{_CACHE_SUBDIR}"


def unzip(source, dest):
    """Extract the regular files of a zip archive under dest; return their paths."""
    written = []
    with zipfile.ZipFile(source) as archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            target = sanitize_archive_path(dest, info.filename)
            os.makedirs(os.path.dirname(target) or ".", 0o750, exist_ok=True)
            with archive.open(info) as src, open(os.path.normpath(target), "wb") as dst:
                shutil.copyfileobj(src, dst)
            written.append(target)
    return written


def _walk(path):
    """Yield every non-directory path under path in lexical, depth-first order."""
    if os.path.isdir(path) and not os.path.islink(path):
        for name in sorted(os.listdir(path)):
            yield from _walk(os.path.join(path, name))
    else:
        yield path


def _read_policy_spec(text):
    try:
        document = yaml.safe_load(text) if text else None
    except yaml.YAMLError as err:
        raise ValueError(f"invalid policy yaml: {err}") from err
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError("policy yaml is not a mapping")
    spec = document.get("spec") or {}
    if not isinstance(spec, dict):
        raise ValueError("policy spec is not a mapping")
    return spec


def _read_text(path):
    with open(os.path.normpath(path), "rb") as handle:
        return handle.read()


def update_policy_rules(root, cache_dir):
    """Merge every ``metadata.yaml`` under root into ``rules.yaml`` in cache_dir.

    Rules that point at a policy file get that policy's spec inlined.
    Returns the path of the written rule file.
    """
    os.lstat(root)
    metadata_files = [
        path for path in _walk(root) if os.path.basename(path) == _METADATA
    ]

    complete = []
    version = ""
    for metadata in metadata_files:
        raw = _read_text(metadata)
        rule_set = load_rules(raw, raw)
        version = rule_set.version
        base = metadata[: -len(_METADATA)]
        for spec in rule_set:
            if spec.yaml:
                try:
                    policy_text = _read_text(f"{base}{spec.yaml}")
                except OSError:
                    try:
                        policy_text = _read_text(f"{root}/{spec.yaml}")
                    except OSError:
                        policy_text = b""
                spec.spec = _read_policy_spec(policy_text)
                spec.yaml = ""
            complete.append(spec)

    body = yaml.safe_dump(
        [spec.to_dict() for spec in complete],
        default_flow_style=False,
        sort_keys=True,
        allow_unicode=True,
    )
    version = version.strip('"')
    rules_path = os.path.join(cache_dir, _RULES_FILE)
    with open(rules_path, "w", encoding="utf-8") as handle:
        handle.write(f"version: {version}\npolicyRules:\n{body}")
    return rules_path


def current_release(cache_dir, default):
    """Load the cached rule set, or default when none is cached.

    The returned rule set's version is the current policy-template release.
    """
    try:
        data = _read_text(os.path.join(cache_dir, _RULES_FILE))
    except OSError:
        data = b""
    return load_rules(data, default)