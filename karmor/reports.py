"""Text reports of recommended policies, rendered as tables."""

from __future__ import annotations

import io
import logging
import os

log = logging.getLogger(__name__)

_MAX_CELL_WIDTH = 30
_POLICY_NAME_WIDTH = 35
_REPORT_HEADER = ["Policy", "Short Desc", "Severity", "Action", "Tags"]


def wrap_policy_name(name, limit):
    """Break a dash-separated name into lines no longer than limit where possible."""
    pieces = name.split("-")
    lines = []
    line = ""
    for position, piece in enumerate(pieces, start=1):
        candidate = line + piece + ("-" if position != len(pieces) else "")
        if len(candidate) <= limit:
            line = candidate
        else:
            lines.append(line)
            line = candidate[len(line):]
    lines.append(line)
    return "\n".join(lines)


def _title(text):
    return text.replace("_", " ").replace(".", " ").upper()


def _wrap_line(line, limit):
    if len(line) <= limit:
        return [line]
    words = line.split()
    if not words:
        return [line]
    wrapped = []
    current = words[0]
    for word in words[1:]:
        if len(current) + 1 + len(word) <= limit:
            current = f"{current} {word}"
        else:
            wrapped.append(current)
            current = word
    wrapped.append(current)
    return wrapped


def _cell_lines(cell):
    return [part for line in str(cell).split("\n") for part in _wrap_line(line, _MAX_CELL_WIDTH)]


def _center(text, width):
    gap = width - len(text)
    left = (gap + 1) // 2
    return " " * left + text + " " * (gap - left)


def _render_row(cells, widths, border, centered=False):
    height = max(len(cell) for cell in cells)
    out = []
    for index in range(height):
        parts = []
        for cell, width in zip(cells, widths):
            text = cell[index] if index < len(cell) else ""
            parts.append(_center(text, width) if centered else text.ljust(width))
        if border:
            out.append("| " + " | ".join(parts) + " |")
        else:
            out.append((" " + " | ".join(parts) + " ").rstrip())
    return out


def render_table(header, rows, border=True, row_line=False):
    """Render a header and rows as a plain-text table with left-aligned cells."""
    header_cells = [[_title(name)] for name in header]
    body = [[_cell_lines(cell) for cell in row] for row in rows]
    columns = max([len(header_cells), *(len(row) for row in body)])
    if columns == 0:
        return ""
    if header_cells:
        header_cells += [[""]] * (columns - len(header_cells))
    body = [row + [[""]] * (columns - len(row)) for row in body]

    widths = [0] * columns
    for row in ([header_cells] if header_cells else []) + body:
        for column, cell in enumerate(row):
            widths[column] = max(widths[column], *(len(line) for line in cell))

    dashes = "+".join("-" * (width + 2) for width in widths)
    separator = f"+{dashes}+" if border else dashes

    lines = []
    if border:
        lines.append(separator)
    if header_cells:
        lines.extend(_render_row(header_cells, widths, border, centered=True))
        lines.append(separator)
    for position, row in enumerate(body):
        if position and row_line:
            lines.append(separator)
        lines.extend(_render_row(row, widths, border))
    if border and (body or not header_cells):
        lines.append(separator)
    return "\n".join(lines) + "\n"


class TextReport:
    """Collects per-image tables of recommended policies as plain text."""

    def __init__(self):
        self._out = io.StringIO()
        self._header: list[str] = []
        self._rows: list[list[str]] = []

    def _write_image_summary(self, img, out_dir, version):
        rows = []
        if img.deployment:
            rows.append(["Deployment", f"{img.namespace}/{img.deployment}"])
        rows.extend(
            [
                ["Container", img.repo_tags[0]],
                ["OS", img.os],
                ["Arch", img.arch],
                ["Distro", img.distro],
                ["Output Directory", img.policy_dir(out_dir)],
                ["policy-template version", version],
            ]
        )
        self._out.write(render_table([], rows, border=False))

    def start(self, img, out_dir, version):
        """Begin the section for one image with a summary of it."""
        self._write_image_summary(img, out_dir, version)
        self._header = list(_REPORT_HEADER)

    def record(self, spec, policy_path):
        """Add a row for a policy written from a rule."""
        policy_name = policy_path[policy_path.rfind("/") + 1:]
        policy = spec.spec
        self._rows.append(
            [
                wrap_policy_name(policy_name, _POLICY_NAME_WIDTH),
                spec.description.tldr,
                str(int(policy.get("severity") or 0)),
                str(policy.get("action") or ""),
                "\n".join(policy.get("tags") or []),
            ]
        )

    def section_end(self, img):
        """Finish the section for an image and flush its table."""
        self._out.write(render_table(self._header, self._rows, border=True, row_line=True))
        self._rows = []
        self._out.write("\n")

    def render(self, out):
        """Write the collected report to the file out."""
        data = self._out.getvalue().encode("utf-8")
        try:
            fd = os.open(out, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
        except OSError as err:
            log.error("failed to write file %s: %s", out, err)


def report_for(file_name):
    """Return a report writer suited to the report file name."""
    if ".html" in file_name:
        raise ValueError("HTML reports are not supported; use a text report file")
    return TextReport()