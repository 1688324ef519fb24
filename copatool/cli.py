"""Command-line options of the container patching tool."""

from __future__ import annotations

import argparse
import re
import sys
from dataclasses import dataclass
from typing import NoReturn, Optional, Sequence

from .buildkit_opts import DEFAULT_ADDR, BuildkitOpts

DEFAULT_TIMEOUT = 300.0

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration such as ``5m``, ``1h30m`` or ``300ms`` into seconds."""
    rest = text
    sign = 1.0
    if rest[:1] in ("+", "-"):
        sign = -1.0 if rest[0] == "-" else 1.0
        rest = rest[1:]
    if rest == "0":
        return 0.0
    if not rest:
        raise ValueError(f'time: invalid duration "{text}"')
    total = 0.0
    pos = 0
    while pos < len(rest):
        match = _DURATION_PART.match(rest, pos)
        if match is None:
            raise ValueError(f'time: invalid duration "{text}"')
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def _duration(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise ValueError(message)


@dataclass
class PatchArgs:
    """Options of the ``patch`` command."""

    image: str = ""
    report: str = ""
    tag: str = ""
    tag_suffix: str = "patched"
    working_folder: str = ""
    addr: str = ""
    cacert: str = ""
    cert: str = ""
    key: str = ""
    timeout: float = DEFAULT_TIMEOUT
    scanner: str = "trivy"
    ignore_errors: bool = False
    format: str = "openvex"
    output: str = ""
    push: bool = False
    loader: str = ""
    debug: bool = False

    @property
    def buildkit_opts(self) -> BuildkitOpts:
        """The BuildKit connection options the flags describe."""
        return BuildkitOpts(
            addr=self.addr,
            ca_cert_path=self.cacert,
            cert_path=self.cert,
            key_path=self.key,
        )


def _add_patch_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-i", "--image", default="",
                        help="Application image name and tag to patch")
    parser.add_argument("-r", "--report", default="",
                        help="Vulnerability report file or directory path")
    parser.add_argument("-t", "--tag", default="", help="Tag for the patched image")
    parser.add_argument("--tag-suffix", dest="tag_suffix", default="patched",
                        help="Suffix for the patched image (if no explicit --tag provided)")
    parser.add_argument("-w", "--working-folder", dest="working_folder", default="",
                        help="Working folder, defaults to system temp folder")
    parser.add_argument("-a", "--addr", default="",
                        help="Address of buildkitd service, defaults to local docker "
                        f"daemon with fallback to {DEFAULT_ADDR}")
    parser.add_argument("--cacert", default="",
                        help="Absolute path to buildkitd CA certificate")
    parser.add_argument("--cert", default="",
                        help="Absolute path to buildkit client certificate")
    parser.add_argument("--key", default="",
                        help="Absolute path to buildkit client key")
    parser.add_argument("--timeout", type=_duration, default=DEFAULT_TIMEOUT,
                        help="Timeout for the operation, defaults to '5m'")
    parser.add_argument("-s", "--scanner", default="trivy",
                        help="Scanner used to generate the report, defaults to 'trivy'")
    parser.add_argument("--ignore-errors", dest="ignore_errors", action="store_true",
                        help="Ignore errors and continue patching")
    parser.add_argument("-f", "--format", default="openvex",
                        help="Output format, defaults to 'openvex'")
    parser.add_argument("-o", "--output", default="", help="Output file path")
    parser.add_argument("-p", "--push", action="store_true",
                        help="Push patched image to destination registry")
    parser.add_argument("-l", "--loader", default="",
                        help="Loader to use for loading images. Options: 'docker', "
                        "'podman', or empty for auto-detection based on buildkit address")
    parser.add_argument("--debug", action="store_true", default=argparse.SUPPRESS,
                        help="enable debug level logging")


def build_parser() -> argparse.ArgumentParser:
    """The ``copa`` parser with its ``patch`` subcommand."""
    parser = _Parser(prog="copa", description="Project Copacetic: container patching tool")
    parser.add_argument("--debug", action="store_true", default=False,
                        help="enable debug level logging")
    subparsers = parser.add_subparsers(dest="command", parser_class=_Parser)
    patch = subparsers.add_parser(
        "patch",
        help="Patch container images with upgrade packages specified by a vulnerability report",
        epilog="example: copa patch -i images/python:3.7-alpine -r trivy.json "
        "-t 3.7-alpine-patched",
    )
    _add_patch_flags(patch)
    return parser


def parse_patch_args(argv: Optional[Sequence[str]] = None) -> PatchArgs:
    """Parse the arguments that follow ``patch``; raise ``ValueError`` on bad input."""
    if argv is None:
        argv = sys.argv[1:]
    namespace = build_parser().parse_args(["patch", *argv])
    if not namespace.image:
        raise ValueError('required flag(s) "image" not set')
    values = vars(namespace)
    return PatchArgs(**{name: values[name] for name in PatchArgs.__dataclass_fields__})