import sys
import zipfile

import pytest

from karmor.image import ImageError
from karmor.rules import load_rules
from karmor.templates import cache_path, current_release, unzip, update_policy_rules, user_home

DEFAULT_RULES = "version: v0.0.1\npolicyRules:\n- name: default-rule\n"

METADATA = """version: v1.2.3
policyRules:
- name: first
  precondition: []
  yaml: policy.yaml
  description:
    tldr: short
"""

POLICY = """apiVersion: security.kubearmor.com/v1
kind: KubeArmorPolicy
spec:
  action: Block
  file:
    matchPaths:
    - path: /etc/shadow
"""


def test_user_home_posix(monkeypatch, tmp_path):
    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.setenv("HOME", str(tmp_path))
    assert user_home() == str(tmp_path)


def test_user_home_windows(monkeypatch):
    monkeypatch.setattr(sys, "platform", "win32")
    monkeypatch.setenv("HOMEDRIVE", "C:")
    monkeypatch.setenv("HOMEPATH", "\\Users\\me")
    assert user_home() == "C:\\Users\\me"
    monkeypatch.delenv("HOMEDRIVE")
    monkeypatch.delenv("HOMEPATH")
    monkeypatch.setenv("USERPROFILE", "D:\\profile")
    assert user_home() == "D:\\profile"


def test_cache_path(monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.setenv("HOME", "/home/me")
    assert cache_path() == "/home/me/.cache/karmor/"


def test_unzip_round_trip(tmp_path):
    archive = tmp_path / "a.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("pkg/", "")
        zf.writestr("pkg/one.txt", "first")
        zf.writestr("pkg/sub/two.txt", "second")
    dest = tmp_path / "out"
    written = unzip(str(archive), str(dest))
    assert len(written) == 2
    assert (dest / "pkg" / "one.txt").read_text() == "first"
    assert (dest / "pkg" / "sub" / "two.txt").read_text() == "second"


def test_unzip_rejects_escaping_paths(tmp_path):
    archive = tmp_path / "evil.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("../evil.txt", "x")
    with pytest.raises(ImageError):
        unzip(str(archive), str(tmp_path / "out"))
    assert not (tmp_path / "evil.txt").exists()


def test_update_policy_rules_inlines_policy(tmp_path):
    root = tmp_path / "templates"
    (root / "a").mkdir(parents=True)
    (root / "a" / "metadata.yaml").write_text(METADATA)
    (root / "a" / "policy.yaml").write_text(POLICY)
    cache = tmp_path / "cache"
    cache.mkdir()
    path = update_policy_rules(str(root), str(cache))
    rules = load_rules((cache / "rules.yaml").read_bytes(), DEFAULT_RULES)
    assert path == str(cache / "rules.yaml")
    assert rules.version == "v1.2.3"
    assert [r.name for r in rules] == ["first"]
    assert rules.rules[0].yaml == ""
    assert rules.rules[0].spec == {"action": "Block", "file": {"matchPaths": [{"path": "/etc/shadow"}]}}
    assert rules.rules[0].description.tldr == "short"


def test_update_policy_rules_falls_back_to_root(tmp_path):
    root = tmp_path / "templates"
    (root / "a").mkdir(parents=True)
    (root / "a" / "metadata.yaml").write_text(METADATA)
    (root / "policy.yaml").write_text(POLICY)
    update_policy_rules(str(root), str(tmp_path))
    rules = load_rules((tmp_path / "rules.yaml").read_bytes(), DEFAULT_RULES)
    assert rules.rules[0].spec["action"] == "Block"


def test_update_policy_rules_orders_directories(tmp_path):
    root = tmp_path / "templates"
    for folder, name in (("b", "second"), ("a", "first")):
        (root / folder).mkdir(parents=True)
        (root / folder / "metadata.yaml").write_text(
            f"version: v9\npolicyRules:\n- name: {name}\n  precondition: []\n"
        )
    update_policy_rules(str(root), str(tmp_path))
    rules = load_rules((tmp_path / "rules.yaml").read_bytes(), DEFAULT_RULES)
    assert [r.name for r in rules] == ["first", "second"]
    assert rules.version == "v9"


def test_update_policy_rules_missing_root(tmp_path):
    with pytest.raises(FileNotFoundError):
        update_policy_rules(str(tmp_path / "absent"), str(tmp_path))


def test_current_release_uses_default_without_cache(tmp_path):
    rules = current_release(str(tmp_path), DEFAULT_RULES)
    assert rules.version == "v0.0.1"
    assert [r.name for r in rules] == ["default-rule"]


def test_current_release_reads_cache(tmp_path):
    root = tmp_path / "templates"
    (root / "a").mkdir(parents=True)
    (root / "a" / "metadata.yaml").write_text(METADATA)
    (root / "a" / "policy.yaml").write_text(POLICY)
    update_policy_rules(str(root), str(tmp_path))
    rules = current_release(str(tmp_path), DEFAULT_RULES)
    assert rules.version == "v1.2.3"
    assert [r.name for r in rules] == ["first"]