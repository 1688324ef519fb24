"""Helpers for patching an image: tags, image config, os-release and clean-up."""

from __future__ import annotations

import json
import logging
import re
import shutil
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlsplit

from .imageloader import DOCKER, PODMAN
from .platforms import PatchPlatform, Platform
from .reference import ImageReference

log = logging.getLogger(__name__)

COPA_PRODUCT = "copa"
DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"
DEFAULT_SUFFIX = "patched"

# Substring of the lower-cased os-release NAME -> OS family, checked in order.
_OS_FAMILIES = (
    ("alpine", "alpine"),
    ("debian", "debian"),
    ("ubuntu", "ubuntu"),
    ("amazon", "amazon"),
    ("centos", "centos"),
    ("mariner", "cbl-mariner"),
    ("azure linux", "azurelinux"),
    ("red hat", "redhat"),
    ("rocky", "rocky"),
    ("oracle", "oracle"),
    ("alma", "alma"),
)

_DQ_ESCAPE = re.compile(r'\\([\\$"`])')


class UnsupportedOSError(ValueError):
    """The image's operating system is not one the patcher supports."""

    def __init__(self, os_type: str = ""):
        self.os_type = os_type
        super().__init__("unsupported operation")


class OSReleaseError(ValueError):
    """The os-release data could not be parsed."""


def detect_loader_from_buildkit_addr(addr: str) -> str:
    """Guess the image loader from the scheme of the BuildKit address."""
    if not addr:
        return ""
    try:
        scheme = urlsplit(addr).scheme
    except ValueError as exc:
        log.debug("Failed to parse buildkit address %r: %s", addr, exc)
        return ""
    if scheme == "podman-container":
        return PODMAN
    if scheme in ("docker-container", "docker", "buildx"):
        return DOCKER
    return ""


def arch_tag(base: str, arch: str, variant: str) -> str:
    """Return a per-architecture tag such as ``patched-arm64`` or ``patched-arm-v7``."""
    if variant:
        return f"{base}-{arch}-{variant}"
    return f"{base}-{arch}"


def normalize_config_for_platform(
    config_data: Union[bytes, str],
    platform: Optional[Union[Platform, PatchPlatform]],
) -> bytes:
    """Set the architecture, variant and OS of an image config to ``platform``'s."""
    if platform is None:
        raise ValueError("platform is nil")
    config = json.loads(config_data)
    if not isinstance(config, dict):
        raise ValueError("image config is not a JSON object")
    config["architecture"] = platform.architecture
    if platform.variant:
        config["variant"] = platform.variant
    else:
        config.pop("variant", None)
    config["os"] = platform.os
    return json.dumps(
        config, separators=(",", ":"), sort_keys=True, ensure_ascii=False
    ).encode("utf-8")


def resolve_patched_tag(image_ref: ImageReference, explicit_tag: str, suffix: str) -> str:
    """The tag of the patched image: the explicit tag, or the image's tag plus suffix."""
    if explicit_tag:
        return explicit_tag
    suffix = suffix or DEFAULT_SUFFIX
    if not image_ref.tag:
        raise ValueError(f"no tag found in image reference {image_ref}")
    return f"{image_ref.tag}-{suffix}"


def _go_quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote_value(value: str) -> str:
    if not value:
        return value
    if value[0] == "'":
        return value.strip("'").replace("'\\''", "'")
    if value[0] == '"':
        value = value.strip('"')
    return _DQ_ESCAPE.sub(r"\1", value)


def parse_os_release(data: Union[bytes, str, None]) -> dict[str, str]:
    """Parse os-release contents into a mapping of keys to unquoted values."""
    if data is None:
        return {}
    text = data.decode("utf-8", "replace") if isinstance(data, bytes) else data
    fields: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise OSReleaseError(f"osrelease: malformed line {_go_quote(raw)}")
        fields[key.strip()] = _unquote_value(value.strip())
    return fields


def _parse_or_raise(data: Union[bytes, str, None]) -> dict[str, str]:
    try:
        return parse_os_release(data)
    except OSReleaseError as exc:
        raise OSReleaseError(f"unable to parse os-release data {exc}") from exc


def get_os_type(data: Union[bytes, str, None]) -> str:
    """The OS family named by os-release data; raise ``UnsupportedOSError`` otherwise."""
    name = _parse_or_raise(data).get("NAME", "").lower()
    for needle, family in _OS_FAMILIES:
        if needle in name:
            return family
    log.error("unsupported osType %s", name)
    raise UnsupportedOSError(name)


def get_os_version(data: Union[bytes, str, None]) -> str:
    """The ``VERSION_ID`` of os-release data, or ``""`` when it has none."""
    return _parse_or_raise(data).get("VERSION_ID", "")


def repo_name_with_digest(patched_image_name: str, digest: str) -> str:
    """Short repository name joined to a digest, e.g. ``nginx@sha256:...``."""
    last = patched_image_name.split("/")[-1].split(":", 1)[0]
    return f"{last}@{digest}"


def remove_if_not_debug(working_folder: Union[str, Path], debug: bool = False) -> bool:
    """Delete the working folder unless debugging; return whether it was removed."""
    if debug:
        log.warning(
            "--debug specified, working folder at %s needs to be manually cleaned up",
            working_folder,
        )
        return False
    shutil.rmtree(working_folder, ignore_errors=True)
    return True