# karmor

A library for working with runtime security policies for containers and
virtual machines. It covers:

- **Policy recommendation** (`karmor.image`, `karmor.rules`, `karmor.policy`,
  `karmor.templates`): unpack a saved container image archive, read its
  manifest, detect its distribution, match it against a set of policy rules
  and write one YAML policy file per matching rule.
- **Reports** (`karmor.reports`): a plain-text report of each image handled
  and each policy written, rendered as tables.
- **Observability summaries** (`karmor.summary_table`): tables of process,
  file and network activity seen for a pod.
- **VM management** (`karmor.vm_client`): label, onboard and list virtual
  machines and send policies to a control plane over HTTP.
- **Version checks** (`karmor.selfupdate`) and **profile rows**
  (`karmor.profile_view`) that aggregate telemetry logs into counted rows.

Python 3.10 or later is required. Runtime dependencies are `pyyaml`,
`requests` and `semver`.

## Labels

```python
from karmor.labels import label_array_to_label_map, match_labels, unique

label_array_to_label_map(["app=nginx", "tier:web", "broken"])
# {"app": "nginx", "tier": "web"}  -- entries that are not a key/value pair are dropped

match_labels({"app": "nginx"}, {"app": "nginx", "tier": "web"})  # True
unique([" a", "a", "b"])  # ["a", "b"]
```

`karmor.labels` also holds the `Options` and `Deployment` dataclasses and
`create_out_dir(path)`, which creates the last component of an output
directory when it does not exist.

## Images

`karmor.image` works on an image that has already been saved as a tar file:

- `extract_tar(tar_path, dest)` extracts it, unpacking nested `layer.tar`
  files too, and returns the lists of extracted files and directories.
  Member names that would escape `dest` are skipped
  (`sanitize_archive_path` raises `ImageError` for them).
- `ImageInfo.read_manifest(manifest, temp_dir)` fills in architecture, OS
  and repository tags from `manifest.json` and the config it points at.
- `parse_distro_rules(text)` reads a `distroRules` YAML list, and
  `ImageInfo.detect_distro(rules, temp_dir)` picks the first distribution
  whose paths are all present.
- `parse_docker_config(data)` and `auth_string(username, password)` read
  registry credentials from a docker `config.json` and encode them.

Tags are turned into file-system friendly names, and digests are shortened:

```python
from karmor.image import mk_path_from_tag

mk_path_from_tag("docker.io/library/nginx:1.21")
# "docker-io-library-nginx-1-21"
```

## Rules and policies

A rule set is a YAML document with a `version` and a list of `policyRules`.
`load_rules(data, default)` returns a `RuleSet` of `MatchSpec` rules; when
`data` is shorter than 30 bytes the `default` document is loaded instead.

```python
from karmor.image import ImageInfo
from karmor.policy import generate_policies
from karmor.reports import report_for
from karmor.rules import load_rules

with open("rules.yaml", "rb") as handle:
    text = handle.read()
rules = load_rules(text, text)

img = ImageInfo(name="nginx:1.21", repo_tags=["nginx:1.21"], os="linux",
                file_list=["/tmp/image/usr/sbin/nginx"])
report = report_for("report.txt")
written = generate_policies(img, rules, "out", [], report)
report.render("out/report.txt")
```

`generate_policies` skips images whose OS is not `linux`, and writes a
policy for each rule whose tags (if any were asked for) and preconditions
match. Each policy selects the container by `kubearmor.io/container.name`,
or by the image's labels when it has any. `service_account_spec(file_data)`
builds a rule that allows the processes seen reading the service-account
folders, or blocks access when none were seen.

`karmor.templates` keeps a local copy of policy templates under
`cache_path()`: `unzip` extracts an archive, `update_policy_rules(root,
cache_dir)` merges every `metadata.yaml` found under `root` into one
`rules.yaml`, inlining referenced policy files, and `current_release`
loads that file (or a default).

## Text reports

```python
from karmor.reports import render_table, wrap_policy_name

wrap_policy_name("nginx-1-21-maintenance-tool-access", 20)
# "nginx-1-21-\nmaintenance-tool-\naccess"

print(render_table(["Name", "Value"], [["a", "1"]]))
```

`TextReport` collects an image summary and a table of policies per image;
`render(out)` writes it to a file.

## Observability summaries

```python
from karmor.summary_table import PodSummary, display_summary

summary = PodSummary(
    pod_name="web-0",
    namespace="default",
    process_data=[{"source": "/bin/sh", "destination": "/bin/ls",
                   "count": "3", "updated_time": "2024-01-01", "status": "Allow"}],
)
display_summary(summary, request_type="process")
```

Statuses are coloured with `status_color` (green for Allow, yellow for
Audit, red otherwise). With `rev_dns_lookup=True`, connection addresses are
replaced by their reverse-DNS name when one is found.

## Virtual machines

`karmor.vm_client` posts JSON to a control plane address with a 5 second
timeout:

- `label_handling(event_type, vm_name, vm_labels, address, is_kvms_env)`
  adds, removes or (with `LIST`) lists labels given as `key:value,...`.
- `onboard(event_type, path, address)` registers a VM from a YAML file.
- `list_vms(address)` prints and returns the configured VMs
  (`format_vm_list` builds the table).
- `policy_handling(event_type, path, address)` splits a multi-document
  policy file on `---` and posts each policy to `/policy/kubearmor` (host
  policies) or `/policy/cilium`; Cilium policies without a spec are skipped.
- `write_script(vm_name, file, data)` saves an installation script, to
  `<vm_name>.sh` when `file` is `none`.

Failures are raised as `VMError`.

## Versions and profile rows

```python
from karmor.selfupdate import is_latest, is_valid_version

is_valid_version("0.9.1")   # True
is_valid_version("latest")  # False
is_latest("0.9.1", "v0.10.0")  # (False, "0.10.0")
```

`confirm_user_action(action)` asks a yes/no question on the terminal.

```python
from karmor.profile_view import ViewState, generate_rows, sort_rows

rows = sort_rows(generate_rows(logs, ViewState.FILE))
```

`generate_rows` counts identical events of one operation, optionally
filtered by namespace or pod, and keeps each one's latest time.
`ViewState.next()` cycles Process → File → Network.

## What this package does not do

- It provides no command-line program; everything is used as a library.
- It does not talk to a container engine: images must be pulled and saved
  to a tar file beforehand.
- It does not connect to a Kubernetes cluster, set up port forwarding, or
  query a discovery service over gRPC; summaries and service-account rules
  are built from data you pass in.
- It does not look up or download the latest policy-template or tool
  release, and does not replace its own installation; `is_latest` only
  compares versions you give it.
- It does not send policies over gRPC, only over HTTP.
- HTML reports are not supported: `report_for` raises `ValueError` for a
  file name containing `.html`.
- The profile view provides rows and ordering only, not an interactive
  terminal screen.

## Running the tests

Install the `test` extra and run `pytest` from the project directory.