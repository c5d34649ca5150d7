"""Building, checking and writing recommended KubeArmor policies."""

from __future__ import annotations

import copy
import logging
import os

import yaml

from .image import check_for_spec
from .rules import Description, MatchSpec, Ref

log = logging.getLogger(__name__)

API_VERSION = "security.kubearmor.com/v1"
KIND = "KubeArmorPolicy"
CONTAINER_NAME_LABEL = "kubearmor.io/container.name"
SERVICE_ACCOUNT_PATHS = (
    "/var/run/secrets/kubernetes.io/serviceaccount/",
    "/run/secrets/kubernetes.io/serviceaccount/",
)

_SERVICE_ACCOUNT_DETAIL = (
    "Adversaries may gather credentials via APIs within a containers environment. "
    "APIs in these environments, such as the Docker API and Kubernetes APIs, allow a "
    "user to remotely manage their container resources and cluster components. An "
    "adversary may access the Docker API to collect logs that contain credentials to "
    "cloud, container, and various other resources in the environment. An adversary "
    "with sufficient permissions, such as via a pod's service account, may also use "
    "the Kubernetes API to retrieve credentials from the Kubernetes API server. These "
    "credentials may include those needed for Docker API authentication or secrets "
    "from Kubernetes cluster components."
)


def _clean(path):
    return os.path.normpath(path) if path else ""


def create_policy(img, spec):
    """Build the policy document for an image from a rule."""
    rule = spec.spec
    body: dict = {}

    action = rule.get("action")
    if action:
        body["action"] = action
    severity = rule.get("severity") or 0
    if severity:
        body["severity"] = severity
    message = rule.get("message")
    if message:
        body["message"] = message
    tags = rule.get("tags") or []
    if tags:
        body["tags"] = list(tags)

    if img.labels:
        match_labels = dict(img.labels)
    else:
        match_labels = {CONTAINER_NAME_LABEL: img.repo_tags[0].split(":")[0]}
    body["selector"] = {"matchLabels": match_labels}

    for section in ("file", "process"):
        part = rule.get(section) or {}
        if part.get("matchDirectories") or part.get("matchPaths"):
            body[section] = copy.deepcopy(part)
    network = rule.get("network") or {}
    if network.get("matchProtocols"):
        body["network"] = copy.deepcopy(network)

    metadata = {"name": img.policy_name(spec.name)}
    if img.namespace:
        metadata["namespace"] = img.namespace

    return {"apiVersion": API_VERSION, "kind": KIND, "metadata": metadata, "spec": body}


def check_preconditions(img, spec):
    """Return True when the image's files satisfy the rule's preconditions."""
    matches: list[str] = []
    for precondition in spec.precondition:
        matches.extend(check_for_spec(_clean(precondition), img.file_list))
        if "OPTSCAN" in precondition:
            return True
    return len(matches) >= len(spec.precondition)


def match_tags(spec, tags):
    """Return True when no tags are requested or the rule carries one of them."""
    if not tags:
        return True
    rule_tags = spec.spec.get("tags") or []
    return any(tag in rule_tags for tag in tags)


def write_policy_file(img, spec, out_dir, report):
    """Write the policy for a rule as YAML, record it in the report, return its path."""
    policy = create_policy(img, spec)
    out_file = img.policy_file(out_dir, spec.name)
    os.makedirs(os.path.dirname(out_file) or ".", 0o750, exist_ok=True)
    with open(out_file, "w", encoding="utf-8") as handle:
        yaml.safe_dump(policy, handle, default_flow_style=False, sort_keys=True, allow_unicode=True)
    if report is not None:
        report.record(spec, out_file)
    log.info("created policy %s ...", out_file)
    return out_file


def service_account_spec(file_data):
    """Build the runtime service-account rule from observed file accesses.

    Each item is a mapping with ``source`` and ``destination``. Processes seen
    reading the service-account folders are allowed; with none seen, access is blocked.
    """
    from_source = [
        {"path": item.get("source", "")}
        for item in file_data
        if str(item.get("destination", "")).startswith(SERVICE_ACCOUNT_PATHS)
    ]
    directories = []
    for directory in SERVICE_ACCOUNT_PATHS:
        entry = {"dir": directory, "recursive": True}
        if from_source:
            entry["fromSource"] = copy.deepcopy(from_source)
        directories.append(entry)

    spec = MatchSpec(
        name="allow-serviceaccount-runtime",
        description=Description(
            refs=[
                Ref(
                    name="MITRE Unsecured Credentials: Container API",
                    url=["https://attack.mitre.org/techniques/T1552/007/"],
                )
            ],
            tldr="Kubernetes serviceaccount folder access should be limited",
            detailed=_SERVICE_ACCOUNT_DETAIL,
        ),
        spec={
            "action": "Allow",
            "message": "serviceaccount access detected",
            "tags": ["KUBERNETES", "SERVICE ACCOUNT", "RUNTIME POLICY"],
            "severity": 1,
            "file": {"matchDirectories": directories},
        },
    )
    if not from_source:
        spec.name = "block-serviceaccount-runtime"
        spec.spec["action"] = "Block"
        spec.spec["message"] = "serviceaccount access blocked"
    return spec


def generate_policies(img, rules, out_dir, tags, report):
    """Write a policy for every rule that fits the image; return the written paths."""
    if img.os != "linux":
        log.warning("non-linux platforms are not supported, yet.")
        return []
    if report is not None:
        report.start(img, out_dir, rules.version)
    written = []
    for spec in rules:
        if not match_tags(spec, tags):
            continue
        if not check_preconditions(img, spec):
            continue
        written.append(write_policy_file(img, spec, out_dir, report))
    if report is not None:
        report.section_end(img)
    return written