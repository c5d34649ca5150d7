"""Policy rule definitions and loading of rule sets from YAML."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

import yaml

_MIN_RULES_BYTES = 30


def _text(value, what):
    """Return value as a string; None becomes empty, other types are refused."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{what} must be a string, got {type(value).__name__}")
    return value


def _text_list(value, what):
    """Return value as a list of strings; None becomes empty."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{what} must be a list")
    return [_text(item, what) for item in value]


@dataclass
class Ref:
    """A named reference with one or more links."""

    name: str = ""
    url: list[str] = field(default_factory=list)


@dataclass
class Description:
    """Short and detailed descriptions of a rule, with references."""

    refs: list[Ref] = field(default_factory=list)
    tldr: str = ""
    detailed: str = ""


@dataclass
class MatchSpec:
    """A policy rule: its name, preconditions, description and policy spec."""

    name: str = ""
    precondition: list[str] = field(default_factory=list)
    description: Description = field(default_factory=Description)
    yaml: str = ""
    spec: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data):
        """Build a rule from its decoded YAML or JSON mapping."""
        if not isinstance(data, dict):
            raise ValueError("policy rule must be a mapping")
        raw_description = data.get("description") or {}
        if not isinstance(raw_description, dict):
            raise ValueError("description must be a mapping")
        raw_refs = raw_description.get("refs") or []
        if not isinstance(raw_refs, list):
            raise ValueError("refs must be a list")
        refs = []
        for raw_ref in raw_refs:
            if not isinstance(raw_ref, dict):
                raise ValueError("ref must be a mapping")
            refs.append(
                Ref(
                    name=_text(raw_ref.get("name"), "ref name"),
                    url=_text_list(raw_ref.get("url"), "ref url"),
                )
            )
        spec = data.get("spec") or {}
        if not isinstance(spec, dict):
            raise ValueError("spec must be a mapping")
        return cls(
            name=_text(data.get("name"), "name"),
            precondition=_text_list(data.get("precondition"), "precondition"),
            description=Description(
                refs=refs,
                tldr=_text(raw_description.get("tldr"), "tldr"),
                detailed=_text(raw_description.get("detailed"), "detailed"),
            ),
            yaml=_text(data.get("yaml"), "yaml"),
            spec=dict(spec),
        )

    def to_dict(self):
        """Return the rule as a plain mapping suitable for YAML or JSON output."""
        result = {
            "name": self.name,
            "precondition": list(self.precondition),
            "description": {
                "refs": [{"name": ref.name, "url": list(ref.url)} for ref in self.description.refs],
                "tldr": self.description.tldr,
                "detailed": self.description.detailed,
            },
            "yaml": self.yaml,
        }
        if self.spec:
            result["spec"] = dict(self.spec)
        return result


@dataclass
class RuleSet:
    """A versioned, ordered collection of policy rules."""

    version: str = ""
    rules: list[MatchSpec] = field(default_factory=list)

    def __iter__(self):
        return iter(self.rules)

    def __len__(self):
        return len(self.rules)


def _version_text(value):
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip('"')
    return json.dumps(value).strip('"')


def load_rules(data, default):
    """Load a rule set from YAML.

    Documents shorter than 30 bytes are treated as absent and the default
    document is loaded instead.
    """
    raw = data.encode("utf-8") if isinstance(data, str) else bytes(data or b"")
    if len(raw) < _MIN_RULES_BYTES:
        raw = default.encode("utf-8") if isinstance(default, str) else bytes(default)
    try:
        document = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise ValueError(f"failed to convert policy rules yaml to json: {err}") from err
    if not isinstance(document, dict):
        raise ValueError("failed to unmarshal policy rules json")
    if "policyRules" not in document:
        raise ValueError("failed to unmarshal policy rules")
    entries = document["policyRules"]
    if entries is None:
        entries = []
    if not isinstance(entries, list):
        raise ValueError("failed to unmarshal policy rules")
    rules = [MatchSpec.from_dict(entry) for entry in entries]
    return RuleSet(version=_version_text(document.get("version")), rules=rules)