"""Tables for observability summaries of pods: processes, files and connections."""

from __future__ import annotations

import socket
import sys
from dataclasses import dataclass, field

from .reports import render_table

SYS_PROC_HEADER = ["Src Process", "Destination Process Path", "Count", "Last Updated Time", "Status"]
SYS_FILE_HEADER = ["Src Process", "Destination File Path", "Count", "Last Updated Time", "Status"]
SYS_NW_HEADER = [
    "Protocol", "Command", "POD/SVC/IP", "Port", "Namespace", "Labels", "Count", "Last Updated Time",
]
SYS_BIND_NW_HEADER = ["Protocol", "Command", "Bind Port", "Bind Address", "Count", "Last Updated Time"]

_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_RED = "\033[31m"
_RESET = "\033[0m"


@dataclass
class PodSummary:
    """Observed activity of one pod.

    Process and file entries are mappings with ``source``, ``destination``,
    ``count``, ``updated_time`` and ``status``. Ingress and egress entries carry
    ``protocol``, ``command``, ``ip``, ``port``, ``namespace``, ``labels``,
    ``count`` and ``updated_time``. Bind entries carry ``protocol``, ``command``,
    ``bind_port``, ``bind_address``, ``count`` and ``updated_time``.
    """

    pod_name: str = ""
    namespace: str = ""
    cluster_name: str = ""
    container_name: str = ""
    label: str = ""
    process_data: list[dict] = field(default_factory=list)
    file_data: list[dict] = field(default_factory=list)
    ingress_connection: list[dict] = field(default_factory=list)
    egress_connection: list[dict] = field(default_factory=list)
    bind_connection: list[dict] = field(default_factory=list)


def status_color(status):
    """Colour a status: green for Allow, yellow for Audit, red for anything else."""
    if status == "Allow":
        color = _GREEN
    elif status == "Audit":
        color = _YELLOW
    else:
        color = _RED
    return f"{color}{status}{_RESET}"


def dns_lookup(ip, rev_dns_lookup):
    """Return the first reverse-DNS name of ip when lookups are on, else ip itself."""
    if not rev_dns_lookup or "svc" in ip or "pod" in ip:
        return ip
    try:
        hostname, _aliases, _addresses = socket.gethostbyaddr(ip)
    except (OSError, UnicodeError, ValueError):
        return ip
    return hostname or ip


def write_table(header, rows, out=None):
    """Write rows under a header as a bordered, left-aligned table."""
    out = out if out is not None else sys.stdout
    out.write(render_table(header, rows, border=True))


def pod_info_table(resp, out=None):
    """Write the identifying details of a pod as a borderless two-column list."""
    out = out if out is not None else sys.stdout
    out.write("\n")
    rows = [
        ("Pod Name", resp.pod_name),
        ("Namespace Name", resp.namespace),
        ("Cluster Name", resp.cluster_name),
        ("Container Name", resp.container_name),
        ("Labels", resp.label),
    ]
    width = max(len(key) for key, _ in rows)
    for key, value in rows:
        out.write(f"{key.ljust(width)}\t{value}".rstrip() + "\n")


def _text(entry, key):
    value = entry.get(key, "")
    return "" if value is None else str(value)


def _system_rows(entries):
    rows = [
        [
            _text(entry, "source"),
            _text(entry, "destination"),
            _text(entry, "count"),
            _text(entry, "updated_time"),
            status_color(_text(entry, "status")),
        ]
        for entry in entries
    ]
    return sorted(rows)


def _network_rows(entries, rev_dns_lookup):
    return [
        [
            _text(entry, "protocol"),
            _text(entry, "command"),
            dns_lookup(_text(entry, "ip"), rev_dns_lookup),
            _text(entry, "port"),
            _text(entry, "namespace"),
            _text(entry, "labels"),
            _text(entry, "count"),
            _text(entry, "updated_time"),
        ]
        for entry in entries
    ]


def _bind_rows(entries):
    return [
        [
            _text(entry, "protocol"),
            _text(entry, "command"),
            _text(entry, "bind_port"),
            _text(entry, "bind_address"),
            _text(entry, "count"),
            _text(entry, "updated_time"),
        ]
        for entry in entries
    ]


def _section(out, title, header, rows):
    out.write(f"\n{title}\n")
    write_table(header, rows, out)
    out.write("\n")


def display_summary(resp, rev_dns_lookup=False, request_type="process,file,network", out=None):
    """Write the tables of a pod summary for the requested kinds of activity."""
    out = out if out is not None else sys.stdout
    if not (resp.process_data or resp.file_data or resp.ingress_connection or resp.egress_connection):
        return

    pod_info_table(resp, out)

    if "process" in request_type and resp.process_data:
        _section(out, "Process Data", SYS_PROC_HEADER, _system_rows(resp.process_data))

    if "file" in request_type and resp.file_data:
        _section(out, "File Data", SYS_FILE_HEADER, _system_rows(resp.file_data))

    if "network" in request_type:
        if resp.ingress_connection:
            _section(out, "Ingress connections", SYS_NW_HEADER,
                     _network_rows(resp.ingress_connection, rev_dns_lookup))
        if resp.egress_connection:
            _section(out, "Egress connections", SYS_NW_HEADER,
                     _network_rows(resp.egress_connection, rev_dns_lookup))
        if resp.bind_connection:
            _section(out, "Bind Points", SYS_BIND_NW_HEADER, _bind_rows(resp.bind_connection))