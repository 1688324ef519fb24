# copatool

Building blocks for patching container images with the package updates named
in a vulnerability scan report. It needs Python 3.10 or later and nothing
outside the standard library.

## What is in the package

- **`copatool.platforms`**: `Platform` and `PatchPlatform`; `platform_key`
  (keys such as `linux/arm/v7` or `windows/amd64@10.0`); `map_go_arch`
  (architecture and variant to QEMU emulator name); `is_supported_os_type`;
  `qemu_available`, which looks for a matching `binfmt_misc` entry or a
  `qemu-<arch>-static` binary on `PATH`; `setup_labels`, which reads or adds
  the `BaseImage` label of an image config; `array_file`; `platforms_from_index`,
  which takes the platforms out of an OCI image index document (dropping
  `unknown` platforms and the arm64 `v8` variant); and `merge_platforms`, which
  attaches report files to index platforms and keeps those without one.
- **`copatool.buildkit_opts`**: `BuildkitOpts` (address and TLS paths),
  `server_name_from_addr`, `credential_options`, and the capability checks
  `missing_capabilities` and `validate_capabilities`, which raises
  `MissingCapabilitiesError` when `mergeop` or `diffop` is missing.
- **`copatool.connhelpers`**: `docker_host` resolves the Docker daemon address
  from its argument, `DOCKER_HOST`, the current Docker context
  (`addr_from_docker_context`, `addr_from_context`, which run the `docker`
  CLI) or the default socket. For buildx: `parse_buildx_url`,
  `current_builder`, `load_builder_config` (returns a `BuildxConfig` of
  `BuildxNode`s, `docker-container` driver only) and `choose_buildx_node`.
  `NoDockerContextError` is raised when no context is current.
- **`copatool.imageloader`**: `DockerClient` (a small Docker Engine API client
  over a Unix socket or TCP), `DockerLoader` and `PodmanLoader` (pipes into
  `podman load`), `probe_docker`, `probe_podman`, and `new_loader`, which takes
  `"docker"`, `"podman"` or `""` (Docker, then Podman). Failures raise
  `ImageLoadError`.
- **`copatool.reference`**: `parse_normalized_named` (`alpine:3.19` becomes
  `docker.io/library/alpine:3.19`), `parse_named` (canonical form only), and
  `ImageReference` with `name`, `is_name_only` and `with_tag`. Malformed
  references raise `ReferenceError`.
- **`copatool.patch`**: `resolve_patched_tag`, `arch_tag`,
  `normalize_config_for_platform`, `detect_loader_from_buildkit_addr`,
  `parse_os_release`, `get_os_type`, `get_os_version`,
  `repo_name_with_digest` and `remove_if_not_debug`.
- **`copatool.multiplatform`**: `PlatformSummary`, `PatchResult`,
  `format_summary_table` (the aligned `PLATFORM STATUS REFERENCE ERROR`
  table), `find_platform_descriptor` (a platform's descriptor in an index
  document) and `push_commands` (the `docker push` and
  `docker buildx imagetools create` lines to run after a local patch).
- **`copatool.scanner`**: `ScannerCommand` builds (`args`) and runs (`scan`)
  a Trivy image scan of OS packages; `download_db_args` and `download_db`
  fetch the vulnerability database; `DockerAddress` derives `DOCKER_HOST` from
  a `docker://` value of `COPA_BUILDKIT_ADDR`; `validate_vex_json` checks a
  `vex.json` file.
- **`copatool.cli`**: `build_parser`, `parse_patch_args` (returns `PatchArgs`,
  with `buildkit_opts` built from the flags) and `parse_duration` for values
  such as `5m` or `1h30m`.

## Examples

Tags for a patched image:

```python
from copatool.patch import arch_tag, resolve_patched_tag
from copatool.reference import parse_normalized_named

ref = parse_normalized_named("nginx:1.23")
tag = resolve_patched_tag(ref, "", "")   # "1.23-patched"
arch_tag(tag, "arm", "v7")               # "1.23-patched-arm-v7"
```

An image without a tag has nothing to add a suffix to, so
`resolve_patched_tag` raises `ValueError` unless an explicit tag is given.

Platform keys and emulator names:

```python
from copatool.platforms import Platform, map_go_arch, platform_key

platform_key(Platform(os="linux", architecture="arm", variant="v7"))  # "linux/arm/v7"
map_go_arch("arm64", "")    # "aarch64"
map_go_arch("ppc64", "le")  # "ppc64le"
```

Working out the distribution of an image from its `os-release` file:

```python
from copatool.patch import get_os_type, get_os_version

data = b'NAME="Alpine Linux"\nID=alpine\nVERSION_ID=3.7.3\n'
get_os_type(data)     # "alpine"
get_os_version(data)  # "3.7.3"
```

Distributions that are not supported raise `UnsupportedOSError`; malformed
files raise `OSReleaseError`.

Parsing the `patch` options:

```python
from copatool.cli import parse_patch_args

args = parse_patch_args(["-i", "alpine:3.19", "-r", "trivy.json"])
args.timeout  # 300.0
```

`--image` is required (`ValueError` otherwise); the timeout defaults to five
minutes, the scanner to `trivy`, the output format to `openvex` and the tag
suffix to `patched`.

## What it does not do

The package does not patch images by itself. It installs no command; the
`cli` module only parses options. Nothing in it talks to a BuildKit daemon,
builds or solves an image, reads vulnerability report files, writes VEX
documents, or fetches manifests from a registry: index documents are passed
in by the caller, and `validate_capabilities` checks a set of capability names
the caller supplies.

## Running the tests

Install the `test` extra and run `pytest` from the project directory.