"""Recommendation options, deployment records and label helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

LabelMap = dict[str, str]

_LABEL_SEPARATORS = frozenset(":=")


@dataclass
class Options:
    """Options that drive policy recommendation."""

    images: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    namespace: str = ""
    out_dir: str = ""
    report_file: str = ""
    config: str = ""


@dataclass
class Deployment:
    """Brief information about a workload and the images it runs."""

    name: str = ""
    namespace: str = ""
    labels: LabelMap = field(default_factory=dict)
    images: list[str] = field(default_factory=list)


def unique(items):
    """Return the items stripped of surrounding spaces, without repeats, in first-seen order."""
    return list(dict.fromkeys(item.strip(" ") for item in items))


def _fields(text):
    """Split text on ':' and '=', dropping empty pieces."""
    pieces = []
    current = []
    for char in text:
        if char in _LABEL_SEPARATORS:
            if current:
                pieces.append("".join(current))
                current = []
        else:
            current.append(char)
    if current:
        pieces.append("".join(current))
    return pieces


def label_array_to_label_map(labels):
    """Turn ``key=value`` or ``key:value`` strings into a mapping.

    Entries that do not split into exactly two parts are ignored.
    """
    label_map: LabelMap = {}
    for label in labels:
        pair = _fields(label)
        if len(pair) != 2:
            continue
        key, value = pair
        label_map[key] = value
    return label_map


def match_labels(filter_labels, selector):
    """Return True when every filter label has the same value in the selector.

    A missing selector key counts as an empty value.
    """
    return all(selector.get(key, "") == value for key, value in filter_labels.items())


def create_out_dir(path):
    """Create the output directory if it does not exist yet.

    Only the last path component is created; a missing parent raises.
    """
    if not path:
        return
    if not os.path.exists(path):
        os.mkdir(path, 0o750)
    else:
        os.stat(path)