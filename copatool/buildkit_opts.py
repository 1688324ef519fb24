"""Connection options for a BuildKit daemon and capability checks."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from urllib.parse import urlsplit

DEFAULT_ADDR = "unix:///run/buildkit/buildkitd.sock"

# LLB operations the patcher relies on.
REQUIRED_CAPS = ("mergeop", "diffop")

_DIGITS = frozenset("0123456789")


@dataclass
class BuildkitOpts:
    """Address and TLS material for reaching a BuildKit daemon."""

    addr: str = ""
    ca_cert_path: str = ""
    cert_path: str = ""
    key_path: str = ""


class MissingCapabilitiesError(Exception):
    """The BuildKit daemon lacks operations the patcher needs."""

    def __init__(self, missing: Iterable[str]):
        self.missing = tuple(missing)
        super().__init__(
            "missing required buildkit functionality: " + ", ".join(self.missing)
        )


def _valid_optional_port(port: str) -> bool:
    if port == "":
        return True
    return port[0] == ":" and all(c in _DIGITS for c in port[1:])


def server_name_from_addr(addr: str) -> str:
    """Return the host name of a daemon address, or ``""`` if it has none."""
    try:
        netloc = urlsplit(addr).netloc
    except ValueError:
        return ""
    host = netloc.rpartition("@")[2]
    if host.startswith("["):
        end = host.find("]")
        if end == -1 or not _valid_optional_port(host[end + 1:]):
            return ""
        return host[1:end]
    colon = host.rfind(":")
    if colon != -1:
        if not _valid_optional_port(host[colon:]):
            return ""
        host = host[:colon]
    return host


def credential_options(opts: BuildkitOpts) -> dict[str, str]:
    """TLS settings to use when connecting with ``opts``.

    ``server_name`` and ``ca_cert`` appear when a CA certificate is given;
    ``cert`` and ``key`` appear when either a client certificate or key is.
    """
    options: dict[str, str] = {}
    if opts.ca_cert_path:
        options["server_name"] = server_name_from_addr(opts.addr)
        options["ca_cert"] = opts.ca_cert_path
    if opts.cert_path or opts.key_path:
        options["cert"] = opts.cert_path
        options["key"] = opts.key_path
    return options


def _enabled(supported: Iterable[str] | Mapping[str, bool]) -> set[str]:
    if isinstance(supported, Mapping):
        return {cap for cap, enabled in supported.items() if enabled}
    return set(supported)


def missing_capabilities(supported: Iterable[str] | Mapping[str, bool]) -> list[str]:
    """Required capabilities absent from ``supported``, in a fixed order."""
    available = _enabled(supported)
    return [cap for cap in REQUIRED_CAPS if cap not in available]


def validate_capabilities(supported: Iterable[str] | Mapping[str, bool]) -> None:
    """Raise ``MissingCapabilitiesError`` unless every required capability is there."""
    missing = missing_capabilities(supported)
    if missing:
        raise MissingCapabilitiesError(missing)