"""Loading an image tarball into a local container engine (Docker or Podman)."""

from __future__ import annotations

import http.client
import json
import logging
import os
import shutil
import socket
import subprocess
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Optional, Union
from urllib.parse import urlsplit

from .connhelpers import DEFAULT_DOCKER_HOST, addr_from_docker_context

log = logging.getLogger(__name__)

DOCKER = "docker"
PODMAN = "podman"

_PING_TIMEOUT = 10.0


class ImageLoadError(Exception):
    """An image could not be loaded, or no engine was available to load it."""


@dataclass
class ImageLoadResponse:
    """The streamed reply of an image load: its lines, and whether they are JSON."""

    body: Any
    json: bool = False
    connection: Any = field(default=None, repr=False)

    def close(self) -> None:
        """Release the body and the connection it came over."""
        close_body = getattr(self.body, "close", None)
        if close_body is not None:
            close_body()
        if self.connection is not None:
            self.connection.close()


def _read_all(tar: Union[bytes, bytearray, BinaryIO]) -> bytes:
    if isinstance(tar, (bytes, bytearray)):
        return bytes(tar)
    return tar.read()


class _UnixHTTPConnection(http.client.HTTPConnection):
    def __init__(self, path: str, timeout: Optional[float] = None):
        super().__init__("localhost", timeout=timeout)
        self._socket_path = path

    def connect(self) -> None:
        family = getattr(socket, "AF_UNIX", None)
        if family is None:
            raise OSError("unix sockets are not supported on this system")
        sock = socket.socket(family, socket.SOCK_STREAM)
        if self.timeout is not None:
            sock.settimeout(self.timeout)
        try:
            sock.connect(self._socket_path)
        except OSError:
            sock.close()
            raise
        self.sock = sock


class DockerClient:
    """A minimal client of the Docker Engine API."""

    def __init__(self, host: str = DEFAULT_DOCKER_HOST, timeout: Optional[float] = None):
        parts = urlsplit(host)
        scheme = parts.scheme.lower()
        if scheme == "unix":
            if not parts.path:
                raise ValueError(f"docker host {host!r} has no socket path")
        elif scheme in ("tcp", "http", "https"):
            if not parts.hostname:
                raise ValueError(f"docker host {host!r} has no host")
        else:
            raise ValueError(f"unsupported docker host {host!r}")
        self.host = host
        self.timeout = timeout
        self._scheme = scheme
        self._parts = parts

    def _connection(self, timeout: Optional[float]) -> http.client.HTTPConnection:
        if self._scheme == "unix":
            return _UnixHTTPConnection(self._parts.path, timeout=timeout)
        if self._scheme == "https":
            return http.client.HTTPSConnection(
                self._parts.hostname, self._parts.port, timeout=timeout
            )
        return http.client.HTTPConnection(
            self._parts.hostname, self._parts.port, timeout=timeout
        )

    def ping(self) -> str:
        """Check the daemon answers; return the body of its reply."""
        timeout = self.timeout if self.timeout is not None else _PING_TIMEOUT
        conn = self._connection(timeout)
        try:
            conn.request("GET", "/_ping")
            response = conn.getresponse()
            body = response.read().decode("utf-8", "replace")
        finally:
            conn.close()
        if response.status != 200:
            raise ImageLoadError(f"docker ping: HTTP {response.status}: {body.strip()}")
        return body

    def image_load(self, tar: Union[bytes, BinaryIO]) -> ImageLoadResponse:
        """Send an image tarball to the daemon and return its streamed reply."""
        data = _read_all(tar)
        conn = self._connection(self.timeout)
        try:
            conn.request(
                "POST",
                "/images/load?quiet=0",
                body=data,
                headers={"Content-Type": "application/x-tar"},
            )
            response = conn.getresponse()
        except BaseException:
            conn.close()
            raise
        if response.status >= 400:
            body = response.read().decode("utf-8", "replace")
            conn.close()
            try:
                message = json.loads(body).get("message", body)
            except (ValueError, AttributeError):
                message = body
            raise ImageLoadError(f"HTTP {response.status}: {str(message).strip()}")
        content_type = response.getheader("Content-Type", "") or ""
        return ImageLoadResponse(
            body=response,
            json=content_type.split(";")[0].strip() == "application/json",
            connection=conn,
        )


def _error_from_line(line: str) -> Optional[str]:
    """The error message carried by a JSON status line, if it carries one."""
    try:
        document = json.loads(line)
    except ValueError:
        log.debug("final ImageLoad line (non-JSON): %s", line)
        return None
    if not isinstance(document, dict):
        log.debug("final ImageLoad line (non-JSON): %s", line)
        return None
    error_response = document.get("errorResponse")
    if isinstance(error_response, dict):
        return str(error_response.get("message", ""))
    error = document.get("error")
    if isinstance(error, str) and error:
        return error
    return None


class DockerLoader:
    """Loads images through the Docker Engine API."""

    def __init__(self, client: Any):
        self.client = client

    def load(self, tar: Union[bytes, BinaryIO], image_ref: str = "") -> None:
        """Stream ``tar`` into Docker; raise ``ImageLoadError`` if it is refused."""
        log.debug("Loading image stream using Docker API client")
        try:
            response = self.client.image_load(tar)
        except Exception as exc:
            raise ImageLoadError(f"docker ImageLoad: {exc}") from exc

        last_line = ""
        try:
            for raw in response.body:
                line = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
                last_line = line.rstrip("\r\n")
                log.debug("ImageLoad response stream: %s", last_line)
        except OSError as exc:
            log.warning("error reading ImageLoad response: %s", exc)
        finally:
            response.close()

        if last_line:
            if response.json:
                message = _error_from_line(last_line)
                if message is not None:
                    raise ImageLoadError(f"ImageLoad error: {message}")
            else:
                log.debug("final ImageLoad line (non-JSON): %s", last_line)

        log.info("image loaded successfully via Docker API")


class PodmanLoader:
    """Loads images by piping them into ``podman load``."""

    def load(self, tar: Union[bytes, BinaryIO], image_ref: str = "") -> None:
        """Stream ``tar`` into ``podman load``; raise ``ImageLoadError`` on failure."""
        log.debug("Loading image stream using podman CLI")
        try:
            result = subprocess.run(
                ["podman", "load"],
                input=_read_all(tar),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                check=False,
            )
        except OSError as exc:
            raise ImageLoadError(f"podman load: {exc}") from exc
        output = result.stdout.decode("utf-8", "replace").strip()
        if result.returncode != 0:
            log.error("podman load: exit status %d: %s", result.returncode, output)
            raise ImageLoadError(f"podman load: exit status {result.returncode}")
        log.debug("image loaded via podman CLI: %s", output)


def _docker_host() -> str:
    from_env = os.environ.get("DOCKER_HOST", "")
    if from_env:
        return from_env
    try:
        addr = addr_from_docker_context()
    except Exception as exc:
        log.error("Error loading docker context, falling back to env: %s", exc)
        return DEFAULT_DOCKER_HOST
    return addr or DEFAULT_DOCKER_HOST


def probe_docker() -> Optional[DockerLoader]:
    """A Docker loader if a daemon answers, else ``None``."""
    try:
        client = DockerClient(_docker_host())
        client.ping()
    except (OSError, ValueError, ImageLoadError, http.client.HTTPException) as exc:
        log.debug("docker daemon not reachable: %s", exc)
        return None
    return DockerLoader(client)


def probe_podman() -> Optional[PodmanLoader]:
    """A Podman loader if the ``podman`` command is on PATH, else ``None``."""
    if shutil.which("podman") is None:
        log.debug("podman CLI not found in $PATH")
        return None
    return PodmanLoader()


def new_loader(kind: str = "") -> Union[DockerLoader, PodmanLoader]:
    """Choose a loader: ``docker``, ``podman``, or ``""`` to try Docker then Podman."""
    if kind in (DOCKER, ""):
        docker = probe_docker()
        if docker is not None:
            return docker
        if kind == DOCKER:
            raise ImageLoadError("docker socket not reachable")
    if kind in (DOCKER, PODMAN, ""):
        podman = probe_podman()
        if podman is not None:
            return podman
        if kind == PODMAN:
            raise ImageLoadError("podman socket not reachable")
    raise ImageLoadError(f'unknown loader "{kind}"')