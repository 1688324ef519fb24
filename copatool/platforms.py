"""Container platform descriptions and helpers for deciding what to patch."""

from __future__ import annotations

import json
import logging
import platform as _host
import shutil
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

log = logging.getLogger(__name__)

LINUX = "linux"
ARM64 = "arm64"
BINFMT_MISC_DIR = "/proc/sys/fs/binfmt_misc"

SUPPORTED_OS_TYPES = frozenset(
    {
        "alpine",
        "debian",
        "ubuntu",
        "cbl-mariner",
        "azurelinux",
        "centos",
        "oracle",
        "redhat",
        "rocky",
        "amazon",
        "alma",
    }
)

# Architectures whose emulator name does not depend on the variant.
_FIXED_QEMU_ARCH = {
    "amd64": "x86_64",
    "amd64p32": "x86_64",
    "386": "i386",
    "arm64": "aarch64",
    "arm64be": "aarch64",
    "loong64": "loongarch64",
}

# arch -> (variant suffix, name when suffix matches, name otherwise)
_VARIANT_QEMU_ARCH = {
    "arm": ("eb", "armeb", "arm"),
    "mips64": ("n32", "mipsn32", "mips64"),
    "mips64le": ("n32", "mipsn32el", "mips64el"),
    "ppc64": ("le", "ppc64le", "ppc64"),
    "sh4": ("eb", "sh4eb", "sh4"),
    "xtensa": ("eb", "xtensaeb", "xtensa"),
    "microblaze": ("el", "microblazeel", "microblaze"),
}


@dataclass(frozen=True)
class Platform:
    """An OCI platform: operating system, CPU architecture and variant."""

    os: str
    architecture: str
    variant: str = ""
    os_version: str = ""
    os_features: tuple[str, ...] = ()


@dataclass(frozen=True)
class PatchPlatform:
    """A platform to patch, with the scan report that applies to it, if any."""

    platform: Platform
    report_file: str = ""

    @property
    def os(self) -> str:
        return self.platform.os

    @property
    def architecture(self) -> str:
        return self.platform.architecture

    @property
    def variant(self) -> str:
        return self.platform.variant

    @property
    def os_version(self) -> str:
        return self.platform.os_version


def platform_key(platform: Union[Platform, PatchPlatform]) -> str:
    """Return a key such as ``linux/arm/v7`` or ``windows/amd64@10.0``."""
    if isinstance(platform, PatchPlatform):
        platform = platform.platform
    key = f"{platform.os}/{platform.architecture}"
    if platform.variant:
        key += f"/{platform.variant}"
    if platform.os_version:
        key += f"@{platform.os_version}"
    return key


def map_go_arch(arch: str, variant: str) -> str:
    """Map an OCI architecture and variant to the QEMU emulator name."""
    if arch in _FIXED_QEMU_ARCH:
        return _FIXED_QEMU_ARCH[arch]
    if arch in _VARIANT_QEMU_ARCH:
        suffix, matched, default = _VARIANT_QEMU_ARCH[arch]
        return matched if variant.endswith(suffix) else default
    return arch


def is_supported_os_type(os_type: str) -> bool:
    """Whether a scanner OS family (e.g. ``debian``) is a supported Linux."""
    return os_type in SUPPORTED_OS_TYPES


def setup_labels(image: str, config_data: Union[bytes, str]) -> tuple[str, bytes]:
    """Read the ``BaseImage`` label from an image config, adding it if missing.

    Returns the existing base image (empty if there was none) and the config
    serialised again with the label in place.  Raises ``ValueError`` when the
    config is not valid JSON or does not have the expected shape.
    """
    try:
        image_config = json.loads(config_data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValueError(f"invalid image config: {exc}") from exc
    if not isinstance(image_config, dict):
        raise ValueError("image config is not a JSON object")

    config = image_config.get("config")
    if not isinstance(config, dict):
        raise ValueError("image config has no 'config' object")

    if config.get("labels") is None:
        config["labels"] = {}
    labels = config["labels"]
    if not isinstance(labels, dict):
        raise ValueError("image config labels are not an object")

    base_image = ""
    existing = labels.get("BaseImage")
    if existing is None:
        labels["BaseImage"] = image
    elif isinstance(existing, str):
        base_image = existing
    else:
        raise ValueError("BaseImage label is not a string")

    encoded = json.dumps(
        image_config, separators=(",", ":"), sort_keys=True, ensure_ascii=False
    )
    return base_image, encoded.encode("utf-8")


def array_file(lines: Iterable[str]) -> bytes:
    """Join lines into file contents, each line ending with a newline."""
    return "".join(f"{line}\n" for line in lines).encode("utf-8")


def qemu_available(
    platform: Optional[Union[Platform, PatchPlatform]],
    binfmt_dir: Union[str, Path] = BINFMT_MISC_DIR,
    lookup: Callable[[str], Optional[str]] = shutil.which,
    system: Optional[str] = None,
) -> bool:
    """Whether the host can emulate ``platform`` through QEMU."""
    if platform is None:
        return False

    host_system = (system or _host.system()).lower()
    if host_system == "darwin":
        log.warning("Running on macOS, assuming Docker Desktop handles emulation.")
        return True
    if host_system == "windows":
        log.warning("Running on Windows, assuming Docker Desktop handles emulation.")
        return True

    arch_key = map_go_arch(platform.architecture, platform.variant)

    try:
        entries = list(Path(binfmt_dir).iterdir())
    except OSError:
        return False

    needle = f"qemu-{arch_key}".encode()
    for entry in entries:
        if entry.name in ("register", "status") or entry.is_dir():
            continue
        try:
            data = entry.read_bytes()
        except OSError:
            data = b""
        if b"interpreter" in data and needle in data:
            return True

    # Rootless setups may only have the static interpreter on PATH.
    return lookup(f"qemu-{arch_key}-static") is not None


def platforms_from_index(index: Mapping[str, Any]) -> list[PatchPlatform]:
    """Extract patchable platforms from an OCI image index document."""
    result = []
    for manifest in index.get("manifests") or ():
        spec = manifest.get("platform")
        if spec is None or spec.get("os") == "unknown" or spec.get("architecture") == "unknown":
            log.debug("Skipping manifest with unknown platform: %s", spec)
            continue
        architecture = spec.get("architecture", "")
        variant = spec.get("variant", "")
        # Scanners may leave out v8 for arm64, so drop it for consistency.
        if architecture == ARM64 and variant == "v8":
            variant = ""
        result.append(
            PatchPlatform(
                Platform(
                    os=spec.get("os", ""),
                    architecture=architecture,
                    variant=variant,
                    os_version=spec.get("os.version", ""),
                    os_features=tuple(spec.get("os.features") or ()),
                )
            )
        )
    return result


def merge_platforms(
    manifest_platforms: Optional[Sequence[PatchPlatform]],
    report_platforms: Optional[Sequence[PatchPlatform]],
) -> list[PatchPlatform]:
    """Attach report files to manifest platforms.

    Every manifest platform is kept; those without a matching report get an
    empty report file and are preserved unpatched.  ``report_platforms`` of
    ``None`` means no report directory was given.
    """
    if not manifest_platforms:
        raise ValueError("image is not multi platform")
    if report_platforms is None:
        return list(manifest_platforms)

    reports = {platform_key(p.platform): p.report_file for p in report_platforms}
    merged = []
    for p in manifest_platforms:
        key = platform_key(p.platform)
        report_file = reports.get(key)
        if report_file is None:
            log.debug("No report found for platform %s, preserving original", key)
            report_file = ""
        merged.append(replace(p, report_file=report_file))
    return merged