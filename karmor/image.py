"""Container image inspection: archive extraction, manifests and distro detection."""

from __future__ import annotations

import base64
import json
import logging
import os
import random
import re
import shutil
import string
import tarfile
from dataclasses import dataclass, field

import yaml

log = logging.getLogger(__name__)

_MAX_FILE_BYTES = 2_000_000_000
_LETTERS = string.ascii_lowercase + string.ascii_uppercase
_TAG_REPLACEMENTS = str.maketrans({"/": "-", ":": "-", "\\": "-", ".": "-", "@": "-"})


class ImageError(Exception):
    """Raised when an image, its archive or its metadata cannot be processed."""


def _clean(path):
    """Normalise a path lexically; an empty path becomes '.'."""
    if not path:
        return "."
    cleaned = os.path.normpath(path)
    if os.sep == "/" and cleaned.startswith("//"):
        cleaned = cleaned[1:]
    return cleaned


def _join(*parts):
    """Join the non-empty parts with the separator and normalise the result."""
    joined = os.sep.join(part for part in parts if part)
    return _clean(joined) if joined else ""


@dataclass
class DistroRule:
    """A distribution name and the paths whose presence identifies it."""

    name: str
    paths: list[str] = field(default_factory=list)


def parse_distro_rules(text):
    """Parse the ``distroRules`` list from a YAML document."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as err:
        raise ImageError(f"failed to parse distro rules: {err}") from err
    if not isinstance(data, dict) or not isinstance(data.get("distroRules"), list):
        raise ImageError("failed to unmarshal distro rules")
    rules = []
    for entry in data["distroRules"]:
        if not isinstance(entry, dict):
            raise ImageError("failed to unmarshal distro rules")
        matches = entry.get("match") or []
        paths = [str(m.get("path", "")) for m in matches if isinstance(m, dict)]
        rules.append(DistroRule(name=str(entry.get("name", "")), paths=paths))
    return rules


def mk_path_from_tag(tag):
    """Replace path-unfriendly characters of an image tag with dashes."""
    return tag.translate(_TAG_REPLACEMENTS)


def shorten_image_name_with_sha256(name):
    """Keep only the first 8 hex characters of a sha256 digest in an image name."""
    if "@sha256:" in name:
        return name[: len(name) - 56]
    return name


def check_for_spec(spec, names):
    """Return the names matching the regular expression spec.

    Unless the spec ends with '*', it is anchored at the end.
    """
    if not spec.endswith("*"):
        spec = f"{spec}$"
    pattern = re.compile(spec)
    return [name for name in names if pattern.search(name)]


def sanitize_archive_path(directory, target):
    """Join an archive member name onto directory, refusing paths that escape it."""
    joined = _join(directory, target)
    if joined.startswith(_clean(directory)):
        return joined
    raise ImageError(f"content filepath is tainted: {target}")


def _write_member(archive, member, target):
    if member.size >= _MAX_FILE_BYTES:
        raise ImageError(f"tar member too large: {target}")
    source = archive.extractfile(member)
    if source is None:
        raise ImageError(f"tar member unreadable: {target}")
    fd = os.open(target, os.O_CREAT | os.O_RDWR | os.O_TRUNC, member.mode & 0o7777)
    with source, os.fdopen(fd, "wb") as sink:
        shutil.copyfileobj(source, sink)


def extract_tar(tar_path, dest):
    """Extract a tar archive into dest, unpacking nested ``layer.tar`` files too.

    Returns the extracted regular files and directories as two lists.
    """
    files: list[str] = []
    dirs: list[str] = []
    try:
        archive = tarfile.open(_clean(tar_path), "r:")
    except (OSError, tarfile.TarError) as err:
        raise ImageError(f"cannot open tar {tar_path}: {err}") from err
    with archive:
        try:
            members = archive.getmembers()
        except tarfile.TarError as err:
            raise ImageError(f"tar next failed: {err}") from err
        for member in members:
            try:
                target = sanitize_archive_path(dest, member.name)
            except ImageError:
                log.error("ignoring file %s since it could not be sanitized", member.name)
                continue
            if member.isdir():
                try:
                    os.makedirs(target, 0o750, exist_ok=True)
                except OSError as err:
                    raise ImageError(f"tar mkdirall {target}: {err}") from err
                dirs.append(target)
            elif member.isreg():
                try:
                    _write_member(archive, member, target)
                except OSError as err:
                    log.error("tar open file %s: %s", target, err)
                    continue
                if target.endswith("layer.tar"):
                    inner_files, inner_dirs = extract_tar(target, dest)
                    files.extend(inner_files)
                    dirs.extend(inner_dirs)
                else:
                    files.append(target)
    return files, dirs


def _read_json(path, what):
    try:
        with open(_clean(path), "rb") as handle:
            return json.load(handle)
    except OSError as err:
        raise ImageError(f"{what} read failed: {err}") from err
    except ValueError as err:
        raise ImageError(f"{what} json unmarshal failed: {err}") from err


@dataclass
class ImageInfo:
    """What is known about a container image being analysed."""

    name: str = ""
    repo_tags: list[str] = field(default_factory=list)
    arch: str = ""
    distro: str = ""
    os: str = ""
    file_list: list[str] = field(default_factory=list)
    dir_list: list[str] = field(default_factory=list)
    namespace: str = ""
    deployment: str = ""
    labels: dict[str, str] = field(default_factory=dict)

    def policy_dir(self, out_dir):
        """Directory under out_dir where this image's policies go."""
        if self.deployment:
            directory = f"{self.namespace}-{self.deployment}"
        elif self.namespace:
            directory = f"{self.namespace}-{mk_path_from_tag(self.repo_tags[0])}"
        else:
            directory = mk_path_from_tag(self.repo_tags[0])
        return _join(out_dir, directory)

    def policy_file(self, out_dir, spec):
        """Path of the policy file generated for a rule."""
        if self.deployment:
            file_name = f"{mk_path_from_tag(self.repo_tags[0])}-{spec}.yaml"
        else:
            file_name = f"{spec}.yaml"
        return _join(self.policy_dir(out_dir), file_name)

    def policy_name(self, spec):
        """Name of the policy generated for a rule."""
        tag = mk_path_from_tag(self.repo_tags[0])
        if self.deployment:
            return f"{self.deployment}-{tag}-{spec}"
        return f"{tag}-{spec}"

    def read_manifest(self, manifest, temp_dir):
        """Fill arch, os and repo tags from an image's manifest and config."""
        entries = _read_json(manifest, "manifest")
        if not isinstance(entries, list) or not entries:
            raise ImageError("expecting atleast one config in manifest!")
        chosen = entries[-1]
        for entry in entries:
            if isinstance(entry, dict) and entry.get("RepoTags") is not None:
                chosen = entry
                break
        if not isinstance(chosen, dict) or not isinstance(chosen.get("Config"), str):
            raise ImageError("manifest has no config entry")
        config = _read_json(_join(temp_dir, chosen["Config"]), "config")
        if not isinstance(config, dict):
            raise ImageError("config json unmarshal failed")
        try:
            self.arch = str(config["architecture"])
            self.os = str(config["os"])
        except KeyError as err:
            raise ImageError(f"config lacks {err.args[0]}") from err
        tags = chosen.get("RepoTags")
        if tags is None:
            self.repo_tags.append(shorten_image_name_with_sha256(self.name))
        else:
            self.repo_tags.extend(str(tag) for tag in tags)

    def detect_distro(self, rules, temp_dir):
        """Set and return the first distribution whose paths all exist in the image."""
        for rule in rules:
            if not rule.paths:
                continue
            if all(check_for_spec(_clean(temp_dir + path), self.file_list) for path in rule.paths):
                log.info("Distribution %s", rule.name)
                self.distro = rule.name
                return rule.name
        return None


def parse_docker_config(data):
    """Parse a docker config.json into a mapping of registry to auth settings."""
    try:
        document = json.loads(data)
    except ValueError as err:
        raise ImageError(f"invalid docker config: {err}") from err
    if isinstance(document, dict):
        auths = document.get("auths")
        if isinstance(auths, dict) and auths:
            return auths
    if not isinstance(document, dict) or not all(
        value is None or isinstance(value, dict) for value in document.values()
    ):
        raise ImageError("docker config is not a mapping of auth entries")
    return {key: value or {} for key, value in document.items()}


def auth_string(username, password):
    """Encode registry credentials the way image pulls expect them.

    Returns an empty string unless both values are given.
    """
    if not username or not password:
        return ""
    encoded = json.dumps(
        {"username": username, "password": password},
        separators=(",", ":"),
        ensure_ascii=False,
    )
    for char, escape in (("<", "\\u003c"), (">", "\\u003e"), ("&", "\\u0026"),
                         ("\u2028", "\\u2028"), ("\u2029", "\\u2029")):
        encoded = encoded.replace(char, escape)
    return base64.urlsafe_b64encode(encoded.encode("utf-8")).decode("ascii")


def random_string(n):
    """Return n random ASCII letters; not meant for anything secret."""
    return "".join(random.choice(_LETTERS) for _ in range(n))