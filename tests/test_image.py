import base64
import io
import json
import os
import string
import tarfile

import pytest

from karmor.image import (
    DistroRule,
    ImageError,
    ImageInfo,
    auth_string,
    check_for_spec,
    extract_tar,
    mk_path_from_tag,
    parse_distro_rules,
    parse_docker_config,
    random_string,
    sanitize_archive_path,
    shorten_image_name_with_sha256,
)


def _tar_bytes(entries):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for name, content in entries:
            info = tarfile.TarInfo(name)
            if content is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                archive.addfile(info)
            else:
                info.size = len(content)
                info.mode = 0o644
                archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def test_mk_path_from_tag_replaces_special_characters():
    assert mk_path_from_tag("docker.io/library/nginx:1.2") == "docker-io-library-nginx-1-2"


def test_mk_path_from_tag_invariants():
    tag = "a\\b@c.d/e:f"
    result = mk_path_from_tag(tag)
    assert len(result) == len(tag)
    assert not any(char in result for char in "/:\\.@")


def test_shorten_image_name_with_sha256():
    prefix = "nginx@sha256:"
    name = prefix + "a" * 64
    assert shorten_image_name_with_sha256(name) == prefix + "a" * 8


def test_shorten_image_name_without_digest_unchanged():
    assert shorten_image_name_with_sha256("nginx:latest") == "nginx:latest"


def test_check_for_spec_anchors_at_end():
    names = ["/t/etc/os-release", "/t/etc/os-release.bak", "/t/usr/lib/os-release"]
    assert check_for_spec("/etc/os-release", names) == ["/t/etc/os-release", "/t/usr/lib/os-release"]


def test_check_for_spec_trailing_star_not_anchored():
    names = ["/t/usr/lib/libc.so", "/t/bin/sh"]
    assert check_for_spec("/usr/lib/*", names) == ["/t/usr/lib/libc.so"]


def test_sanitize_archive_path_inside(tmp_path):
    result = sanitize_archive_path(str(tmp_path), "a/b")
    assert result == str(tmp_path / "a" / "b")


def test_sanitize_archive_path_absolute_member_stays_inside(tmp_path):
    result = sanitize_archive_path(str(tmp_path), "/etc/hosts")
    assert result == str(tmp_path / "etc" / "hosts")


def test_sanitize_archive_path_escape_raises(tmp_path):
    with pytest.raises(ImageError):
        sanitize_archive_path(str(tmp_path / "out"), "../../evil.txt")


def test_extract_tar_unpacks_nested_layers(tmp_path):
    layer = _tar_bytes([("etc", None), ("etc/os-release", b"ID=alpine\n")])
    outer = _tar_bytes([
        ("manifest.json", b"[]"),
        ("abc", None),
        ("abc/layer.tar", layer),
        ("../evil.txt", b"nope"),
    ])
    tar_path = tmp_path / "image.tar"
    tar_path.write_bytes(outer)
    dest = tmp_path / "out"
    dest.mkdir()

    files, dirs = extract_tar(str(tar_path), str(dest))

    assert sorted(files) == sorted([str(dest / "manifest.json"), str(dest / "etc" / "os-release")])
    assert sorted(dirs) == sorted([str(dest / "abc"), str(dest / "etc")])
    assert (dest / "etc" / "os-release").read_bytes() == b"ID=alpine\n"
    assert not (tmp_path / "evil.txt").exists()


def test_extract_tar_missing_file_raises(tmp_path):
    with pytest.raises(ImageError):
        extract_tar(str(tmp_path / "missing.tar"), str(tmp_path))


def test_parse_docker_config_auths_section():
    data = json.dumps({"auths": {"registry.example.com": {"auth": "placeholder"}}})
    result = parse_docker_config(data)
    assert result == {"registry.example.com": {"auth": "placeholder"}}


def test_parse_docker_config_flat_mapping():
    data = json.dumps({"registry.example.com": {"auth": "placeholder"}})
    assert parse_docker_config(data) == {"registry.example.com": {"auth": "placeholder"}}


def test_parse_docker_config_invalid_json_raises():
    with pytest.raises(ImageError):
        parse_docker_config(b"not json")


def test_parse_docker_config_non_object_values_raise():
    with pytest.raises(ImageError):
        parse_docker_config(json.dumps({"credsStore": "desktop"}))


def test_auth_string_empty_when_missing_parts():
    password = "password"
    assert auth_string("", password) == ""
    assert auth_string("alice", "") == ""


def test_auth_string_round_trip():
    password = "password"
    encoded = auth_string("alice", password)
    decoded = json.loads(base64.urlsafe_b64decode(encoded))
    assert decoded == {"username": "alice", "password": password}


def test_random_string_length_and_alphabet():
    value = random_string(8)
    assert len(value) == 8
    assert set(value) <= set(string.ascii_letters)
    assert random_string(0) == ""


def test_policy_paths_for_plain_image():
    img = ImageInfo(name="nginx", repo_tags=["nginx"])
    assert img.policy_dir("out") == os.path.join("out", "nginx")
    assert img.policy_file("out", "spec") == os.path.join("out", "nginx", "spec.yaml")
    assert img.policy_name("spec") == "nginx-spec"


def test_policy_paths_with_namespace():
    img = ImageInfo(name="nginx", repo_tags=["nginx"], namespace="ns")
    assert img.policy_dir("out") == os.path.join("out", "ns-nginx")


def test_policy_paths_for_deployment():
    img = ImageInfo(name="nginx", repo_tags=["nginx"], namespace="ns", deployment="web")
    assert img.policy_dir("out") == os.path.join("out", "ns-web")
    assert img.policy_file("out", "spec") == os.path.join("out", "ns-web", "nginx-spec.yaml")
    assert img.policy_name("spec") == "web-nginx-spec"


def test_read_manifest_with_repo_tags(tmp_path):
    (tmp_path / "cfg.json").write_text(json.dumps({"architecture": "amd64", "os": "linux"}))
    manifest = tmp_path / "manifest.json"
    manifest.write_text(json.dumps([{"Config": "cfg.json", "RepoTags": ["nginx:latest"]}]))
    img = ImageInfo(name="nginx:latest")
    img.read_manifest(str(manifest), str(tmp_path))
    assert img.arch == "amd64"
    assert img.os == "linux"
    assert img.repo_tags == ["nginx:latest"]


def test_read_manifest_without_repo_tags_uses_short_name(tmp_path):
    (tmp_path / "cfg.json").write_text(json.dumps({"architecture": "arm64", "os": "linux"}))
    manifest = tmp_path / "manifest.json"
    manifest.write_text(json.dumps([{"Config": "cfg.json", "RepoTags": None}]))
    name = "nginx@sha256:" + "b" * 64
    img = ImageInfo(name=name)
    img.read_manifest(str(manifest), str(tmp_path))
    assert img.repo_tags == [shorten_image_name_with_sha256(name)]
    assert img.arch == "arm64"


def test_read_manifest_empty_raises(tmp_path):
    manifest = tmp_path / "manifest.json"
    manifest.write_text("[]")
    with pytest.raises(ImageError):
        ImageInfo(name="x").read_manifest(str(manifest), str(tmp_path))


def test_parse_distro_rules_and_detect(tmp_path):
    text = (
        "distroRules:\n"
        "  - name: Alpine\n"
        "    match:\n"
        "      - path: /etc/alpine-release\n"
        "  - name: Debian\n"
        "    match:\n"
        "      - path: /etc/debian_version\n"
    )
    rules = parse_distro_rules(text)
    assert rules == [
        DistroRule(name="Alpine", paths=["/etc/alpine-release"]),
        DistroRule(name="Debian", paths=["/etc/debian_version"]),
    ]
    temp_dir = str(tmp_path)
    img = ImageInfo(file_list=[temp_dir + "/etc/debian_version"])
    assert img.detect_distro(rules, temp_dir) == "Debian"
    assert img.distro == "Debian"


def test_detect_distro_no_match_leaves_empty(tmp_path):
    rules = [DistroRule(name="Alpine", paths=["/etc/alpine-release"]), DistroRule(name="Empty")]
    img = ImageInfo(file_list=[str(tmp_path) + "/bin/sh"])
    assert img.detect_distro(rules, str(tmp_path)) is None
    assert img.distro == ""


def test_parse_distro_rules_missing_key_raises():
    with pytest.raises(ImageError):
        parse_distro_rules("other: 1\n")