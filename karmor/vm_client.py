"""Client side of virtual-machine management: labels, onboarding, policies, scripts."""

from __future__ import annotations

import json
import os
import re

import requests
import yaml

KUBEARMOR_POLICY = "KubeArmorPolicy"
KUBEARMOR_HOST_POLICY = "KubeArmorHostPolicy"
CILIUM_NETWORK_POLICY = "CiliumNetworkPolicy"
CILIUM_CLUSTERWIDE_NETWORK_POLICY = "CiliumClusterwideNetworkPolicy"

_TIMEOUT = 5
_BLANK = re.compile(r"^\s*$")
_SEPARATOR = "-------------------------------------------"


class VMError(Exception):
    """Raised when a request to the VM control plane fails or its input is invalid."""


def _post(address, action, data):
    """POST data to address/action and return the response body as text."""
    try:
        response = requests.post(
            f"{address}/{action}",
            data=data,
            headers={"Content-type": "application/json"},
            timeout=_TIMEOUT,
        )
    except requests.RequestException as err:
        raise VMError(str(err)) from err
    return response.text


def build_label_event(event_type, vm_name, vm_labels):
    """Build the label event for a VM; labels are ``key:value`` pairs separated by commas."""
    event = {"type": event_type, "name": vm_name}
    if event_type == "LIST":
        return event
    labels = []
    for item in vm_labels.split(","):
        parts = item.split(":")
        if len(parts) < 2:
            raise VMError(f"invalid label {item!r}: expected key:value")
        labels.append({parts[0]: parts[1]})
    if labels:
        event["labels"] = labels
    return event


def label_handling(event_type, vm_name, vm_labels, address, is_kvms_env):
    """Send a label event to the control plane and return its response body."""
    body = ""
    if is_kvms_env:
        event = build_label_event(event_type, vm_name, vm_labels)
        try:
            body = _post(address, "label", json.dumps(event).encode("utf-8"))
        except VMError as err:
            raise VMError("failed to manage labels") from err

    if event_type == "LIST":
        if body == "":
            raise VMError("failed to get label list")
        print(f"The label list for {vm_name} is {body}")
        return body

    print("Success")
    return body


def _field(entry, name, default=None):
    """Look up a key of a mapping without regard to case."""
    wanted = name.lower()
    for key, value in entry.items():
        if key.lower() == wanted:
            return value
    return default


def format_vm_list(endpoints):
    """Format configured VMs as a numbered table, or a note that there are none."""
    if not endpoints:
        return "No VMs configured\n"
    lines = [_SEPARATOR, f" {'':<3}| {'VM Name':<15}| {'Identity':<10}| Labels", _SEPARATOR]
    for number, vm in enumerate(endpoints, start=1):
        name = str(_field(vm, "VMName", "") or "")
        identity = str(int(_field(vm, "Identity", 0) or 0))
        labels = "; ".join(str(label) for label in (_field(vm, "Labels", []) or []))
        lines.append(f" {str(number):<3}| {name:<15}| {identity:<10}| {labels}")
    return "\n".join(lines) + "\n"


def list_vms(address):
    """Fetch, print and return the VMs configured in the control plane."""
    try:
        body = _post(address, "vmlist", None)
    except VMError as err:
        raise VMError(f"failed to get vm list: {err}") from err
    try:
        endpoints = json.loads(body)
    except ValueError as err:
        raise VMError(f"failed to parse vm list: {err}") from err
    if endpoints is None:
        endpoints = []
    if not isinstance(endpoints, list) or not all(isinstance(vm, dict) for vm in endpoints):
        raise VMError("failed to parse vm list")
    print(format_vm_list(endpoints), end="")
    return endpoints


def _load_yaml(text):
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as err:
        raise VMError(f"invalid yaml: {err}") from err


def onboard(event_type, path, address):
    """Send the VM described in the YAML file at path to the control plane."""
    with open(os.path.normpath(path), encoding="utf-8") as handle:
        vm = _load_yaml(handle.read())
    if vm is not None and not isinstance(vm, dict):
        raise VMError("vm description must be a mapping")
    event = {"type": event_type, "object": vm or {}}
    _post(address, "vm", json.dumps(event).encode("utf-8"))
    print("Success")


def split_policies(text):
    """Split a multi-document policy file on '---', dropping blank documents."""
    return [part for part in text.split("---") if not _BLANK.match(part)]


def send_policy_over_http(address, kind, data):
    """Send an encoded policy event to the kubearmor or cilium policy endpoint."""
    action = "policy/kubearmor" if kind == KUBEARMOR_HOST_POLICY else "policy/cilium"
    try:
        _post(address, action, data)
    except VMError as err:
        raise VMError("failed to send policy") from err
    print("Success")


def policy_handling(event_type, path, address):
    """Send every policy in the YAML file at path to the control plane.

    Cilium policies without a spec are skipped. Returns the kinds that were sent.
    """
    with open(os.path.normpath(path), encoding="utf-8") as handle:
        text = handle.read()

    kind = ""
    sent = []
    for document in split_policies(text):
        policy = _load_yaml(document)
        if policy is not None and not isinstance(policy, dict):
            raise VMError("policy must be a mapping")
        policy = policy or {}
        if "kind" in policy:
            kind = str(policy["kind"] or "")

        if kind in (KUBEARMOR_HOST_POLICY, KUBEARMOR_POLICY):
            event = {"type": event_type, "object": policy}
        elif kind in (CILIUM_NETWORK_POLICY, CILIUM_CLUSTERWIDE_NETWORK_POLICY):
            if policy.get("spec") is None:
                continue
            event = {"type": event_type, "object": policy}
        else:
            event = None

        send_policy_over_http(address, kind, json.dumps(event).encode("utf-8"))
        sent.append(kind)
    return sent


def write_script(vm_name, file, data):
    """Write an installation script; file ``none`` means ``<vm_name>.sh``. Returns the path."""
    filename = f"{vm_name}.sh" if file == "none" else file
    with open(os.path.normpath(filename), "w", encoding="utf-8") as handle:
        handle.write(data)
    print(f"VM installation script copied to {filename}")
    return filename