"""Locating the Docker daemon or buildx builder that BuildKit is reached through."""

from __future__ import annotations

import json
import logging
import os
import random
import re
import subprocess
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlsplit

log = logging.getLogger(__name__)

DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"
SUPPORTED_BUILDX_DRIVER = "docker-container"

_SCHEME = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*):")
_SOCKET_SCHEMES = frozenset({"unix", "npipe"})
_NETWORK_SCHEMES = frozenset({"tcp", "http", "https", "ssh"})


class NoDockerContextError(LookupError):
    """No current Docker context could be found."""

    def __init__(self, detail: str = ""):
        message = "no docker context found"
        if detail:
            message += f": {detail}"
        super().__init__(message)


@dataclass(frozen=True)
class BuildxNode:
    """One node of a buildx builder instance."""

    name: str
    endpoint: str

    @property
    def container_name(self) -> str:
        """Name of the container that runs BuildKit for this node."""
        return f"buildx_buildkit_{self.name}"


@dataclass(frozen=True)
class BuildxConfig:
    """The stored configuration of a buildx builder instance."""

    driver: str
    nodes: tuple[BuildxNode, ...]


def _run_docker(args: Sequence[str], combined: bool) -> subprocess.CompletedProcess:
    command = ["docker", *args]
    try:
        return subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if combined else subprocess.PIPE,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise RuntimeError(f"error starting {' '.join(command)}: {exc}") from exc


def _json_stream(text: str) -> Iterator[Any]:
    decoder = json.JSONDecoder()
    pos = 0
    while True:
        while pos < len(text) and text[pos].isspace():
            pos += 1
        if pos >= len(text):
            return
        value, pos = decoder.raw_decode(text, pos)
        yield value


def _field(mapping: Mapping[str, Any], key: str) -> Any:
    """Look a key up exactly, then ignoring case, as JSON decoding into structs does."""
    if key in mapping:
        return mapping[key]
    lowered = key.lower()
    for name, value in mapping.items():
        if name.lower() == lowered:
            return value
    return None


def addr_from_context(name: str) -> str:
    """Return the Docker endpoint of the named Docker context."""
    result = _run_docker(
        ["context", "inspect", name, "--format", "{{.Endpoints.docker.Host}}"],
        combined=True,
    )
    if result.returncode != 0:
        raise RuntimeError(
            f"error inspecting docker context {name!r}: "
            f"exit status {result.returncode}: {result.stdout}"
        )
    return result.stdout.strip()


def addr_from_docker_context() -> str:
    """Return the Docker endpoint of the current Docker context.

    ``DOCKER_CONTEXT`` names the context when set; otherwise the context the
    Docker CLI marks as current is used.  Raises ``NoDockerContextError`` when
    none is current.
    """
    name = os.environ.get("DOCKER_CONTEXT", "")
    if name:
        return addr_from_context(name)

    result = _run_docker(["context", "ls", "--format", "json"], combined=False)
    failure = ""
    if result.returncode != 0:
        failure = f"exit status {result.returncode}: {result.stderr.strip()}"

    try:
        for entry in _json_stream(result.stdout):
            if isinstance(entry, Mapping) and _field(entry, "Current") is True:
                if failure:
                    raise RuntimeError(f"docker context ls failed: {failure}")
                endpoint = _field(entry, "DockerEndpoint")
                return endpoint if isinstance(endpoint, str) else ""
    except json.JSONDecodeError as exc:
        message = f"error decoding docker context ls output: {exc}"
        if failure:
            message += f" ({failure})"
        raise RuntimeError(message) from exc
    raise NoDockerContextError(failure)


def _validate_connection_string(addr: str) -> str:
    match = _SCHEME.match(addr)
    if match is None:
        raise ValueError(f"invalid docker host {addr!r}")
    scheme = match.group(1).lower()
    parts = urlsplit(addr)
    if scheme in _SOCKET_SCHEMES:
        if not parts.path:
            raise ValueError(f"docker host {addr!r} has no socket path")
    elif scheme in _NETWORK_SCHEMES:
        if not parts.netloc:
            raise ValueError(f"docker host {addr!r} has no host")
    else:
        raise ValueError(f"unsupported protocol scheme {scheme!r} in docker host {addr!r}")
    return addr


def docker_host(addr: str = "") -> str:
    """Resolve the address of the Docker daemon to connect to.

    An empty ``addr`` falls back to ``DOCKER_HOST``, then to the current
    Docker context, then to the default socket.  An address without ``:/`` is
    taken to be a context name.  Raises ``ValueError`` for an address that is
    not a usable connection string.
    """
    if not addr:
        addr = os.environ.get("DOCKER_HOST", "")
    if not addr:
        try:
            addr = addr_from_docker_context()
        except NoDockerContextError:
            return DEFAULT_DOCKER_HOST
        except RuntimeError as exc:
            raise RuntimeError(f"error getting docker context: {exc}") from exc

    if ":/" not in addr:
        try:
            addr = addr_from_context(addr)
        except RuntimeError as exc:
            log.debug(
                "Error getting docker context %s, assuming connection string: %s",
                addr,
                exc,
            )
    return _validate_connection_string(addr)


def parse_buildx_url(url: str) -> str:
    """Return the builder named by a ``buildx://[builder]`` URL (may be empty)."""
    parts = urlsplit(url)
    if parts.scheme != "buildx":
        raise ValueError(f"not a buildx url: {url}")
    if parts.path:
        raise ValueError(f"buildx driver does not support path elements: {parts.path}")
    return parts.netloc


def _docker_config_dir() -> Path:
    configured = os.environ.get("DOCKER_CONFIG")
    if configured:
        return Path(configured)
    return Path.home() / ".docker"


def _buildx_dir(config_dir: Optional[Union[str, Path]]) -> Path:
    return Path(config_dir if config_dir else _docker_config_dir()) / "buildx"


def current_builder(config_dir: Optional[Union[str, Path]] = None) -> str:
    """Name of the buildx builder in use: ``BUILDX_BUILDER`` or the stored current one."""
    from_env = os.environ.get("BUILDX_BUILDER", "")
    if from_env:
        return from_env

    data = (_buildx_dir(config_dir) / "current").read_text(encoding="utf-8")
    try:
        document = json.loads(data)
    except json.JSONDecodeError as exc:
        raise ValueError(f"could not unmarshal buildx config: {exc}") from exc
    if not isinstance(document, Mapping):
        raise ValueError("could not unmarshal buildx config: not an object")
    name = _field(document, "name")
    return name if isinstance(name, str) else ""


def load_builder_config(
    config_dir: Optional[Union[str, Path]], builder: str
) -> BuildxConfig:
    """Read a builder instance's stored configuration and check it can be used."""
    data = (_buildx_dir(config_dir) / "instances" / builder).read_text(encoding="utf-8")
    try:
        document = json.loads(data)
    except json.JSONDecodeError as exc:
        raise ValueError(f"could not unmarshal buildx instance config: {exc}") from exc
    if not isinstance(document, Mapping):
        raise ValueError("could not unmarshal buildx instance config: not an object")

    driver = _field(document, "Driver") or ""
    raw_nodes = _field(document, "Nodes") or []
    if not isinstance(raw_nodes, list):
        raise ValueError("could not unmarshal buildx instance config: nodes is not a list")
    nodes = tuple(
        BuildxNode(
            name=_field(node, "Name") or "",
            endpoint=_field(node, "Endpoint") or "",
        )
        for node in raw_nodes
        if isinstance(node, Mapping)
    )

    if driver != SUPPORTED_BUILDX_DRIVER:
        raise ValueError(f"unsupported buildx driver: {driver}")
    if not nodes:
        raise ValueError("no nodes configured for buildx instance")
    return BuildxConfig(driver=driver, nodes=nodes)


def choose_buildx_node(config: BuildxConfig) -> BuildxNode:
    """Pick one of the builder's nodes at random."""
    if not config.nodes:
        raise ValueError("no nodes configured for buildx instance")
    node = random.choice(config.nodes)
    log.debug(
        "Connect to buildx instance: driver=%s endpoint=%s name=%s",
        config.driver,
        node.endpoint,
        node.name,
    )
    return node