"""Summaries, manifest look-ups and follow-up commands for multi-platform patching."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Union

from .platforms import ARM64, PatchPlatform, Platform, platform_key
from .reference import ImageReference

log = logging.getLogger(__name__)

STATUS_PATCHED = "Patched"
STATUS_NOT_PATCHED = "Not Patched"
STATUS_ERROR = "Error"
STATUS_IGNORED = "Ignored"

SUMMARY_HEADER = ("PLATFORM", "STATUS", "REFERENCE", "ERROR")
_CELL_PADDING = 2


@dataclass
class PlatformSummary:
    """The outcome of patching one platform of a multi-platform image."""

    platform: str
    status: str
    ref: str = ""
    error: str = ""


@dataclass
class PatchResult:
    """The original and patched references of one platform, with its descriptor."""

    original_ref: ImageReference
    patched_ref: ImageReference
    patched_desc: Optional[Mapping[str, Any]] = None

    @property
    def is_patched(self) -> bool:
        """Whether a new image was produced, rather than the original kept."""
        return str(self.patched_ref) != str(self.original_ref)


def format_summary_table(
    platforms: Iterable[Union[Platform, PatchPlatform]],
    summaries: Mapping[str, PlatformSummary],
) -> str:
    """Render the per-platform summary as aligned columns, in platform order."""
    rows = [SUMMARY_HEADER]
    for platform in platforms:
        summary = summaries.get(platform_key(platform))
        if summary is None:
            continue
        rows.append(
            (summary.platform, summary.status, summary.ref or "-", summary.error)
        )

    widths = [
        max(len(row[column]) for row in rows) + _CELL_PADDING
        for column in range(len(SUMMARY_HEADER) - 1)
    ]
    lines = []
    for row in rows:
        aligned = "".join(cell.ljust(width) for cell, width in zip(row, widths))
        lines.append(aligned + row[-1] + "\n")
    return "".join(lines)


def _normalized_variant(architecture: str, variant: str) -> str:
    return "" if architecture == ARM64 and variant == "v8" else variant


def find_platform_descriptor(
    index: Mapping[str, Any], platform: Union[Platform, PatchPlatform]
) -> dict[str, Any]:
    """Return the descriptor of ``platform`` from an OCI image index document.

    An arm64 ``v8`` variant matches a missing variant.  Raises ``ValueError``
    when the document is not an index and ``LookupError`` when the platform
    is not in it.
    """
    manifests = index.get("manifests")
    if not isinstance(manifests, list):
        raise ValueError("expected multi-platform image but got single-arch image")

    target_variant = _normalized_variant(platform.architecture, platform.variant)
    for manifest in manifests:
        spec = manifest.get("platform")
        if spec is None:
            continue
        architecture = spec.get("architecture", "")
        variant = _normalized_variant(architecture, spec.get("variant", ""))
        if (
            spec.get("os", "") == platform.os
            and architecture == platform.architecture
            and variant == target_variant
            and spec.get("os.version", "") == platform.os_version
        ):
            descriptor_platform = {"os": spec.get("os", ""), "architecture": architecture}
            for key in ("variant", "os.version", "os.features"):
                if spec.get(key):
                    descriptor_platform[key] = spec[key]
            return {
                "mediaType": manifest.get("mediaType", ""),
                "size": manifest.get("size", 0),
                "digest": manifest.get("digest", ""),
                "platform": descriptor_platform,
            }

    raise LookupError(
        f"platform {platform.os}/{platform.architecture} not found in manifest"
    )


def push_commands(
    results: Sequence[PatchResult],
    patched_image_name: Union[ImageReference, str],
) -> list[str]:
    """Commands that push the patched images and assemble their manifest list.

    Preserved platforms are referenced by digest when one is known.  Raises
    ``RuntimeError`` when no platform was actually patched.
    """
    patched = [result for result in results if result.is_patched]
    if not patched:
        raise RuntimeError("no patched images were created, check the logs for errors")

    commands = [f"docker push {result.patched_ref}" for result in patched]

    refs = []
    for result in results:
        if result.is_patched:
            refs.append(str(result.patched_ref))
            continue
        digest = (result.patched_desc or {}).get("digest", "")
        if digest:
            refs.append(f"{result.original_ref}@{digest}")
        else:
            refs.append(str(result.original_ref))

    commands.append(
        f"docker buildx imagetools create --tag {patched_image_name} {' '.join(refs)}"
    )
    return commands