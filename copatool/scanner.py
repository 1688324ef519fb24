"""Running the Trivy scanner and checking what a patch run left behind."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

log = logging.getLogger(__name__)

BUILDKIT_ADDR_ENV = "COPA_BUILDKIT_ADDR"
DOCKER_SCHEME = "docker://"
TRIVY_DB_REPOSITORY = "ghcr.io/aquasecurity/trivy-db:2,public.ecr.aws/aquasecurity/trivy-db"


def _run(args: Sequence[str], env: Optional[Mapping[str, str]]) -> str:
    merged = {**os.environ, **(env or {})}
    result = subprocess.run(
        list(args),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        env=merged,
        check=False,
    )
    if result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, list(args), output=result.stdout)
    return result.stdout


@dataclass
class ScannerCommand:
    """Options for a Trivy image scan of OS packages."""

    output: str = ""
    skip_db_update: bool = False
    ignore_file: str = ""
    exit_code: int = 0
    platform: str = ""
    image_src: str = ""

    def args(self, ref: str, ignore_errors: bool = False) -> list[str]:
        """The command line that scans ``ref``."""
        args = [
            "trivy",
            "image",
            "--quiet",
            "--pkg-types=os",
            "--ignore-unfixed",
            "--scanners=vuln",
        ]
        if self.output:
            args += [f"-o={self.output}", "-f=json"]
        if self.skip_db_update:
            args.append("--skip-db-update")
        if self.ignore_file:
            args.append(f"--ignore-policy={self.ignore_file}")
        # With errors ignored, vulnerabilities left behind must not fail the scan.
        if self.exit_code != 0 and not ignore_errors:
            args.append(f"--exit-code={self.exit_code}")
        if self.platform:
            args.append(f"--platform={self.platform}")
        if self.image_src:
            args.append(f"--image-src={self.image_src}")
        args.append(ref)
        return args

    def scan(
        self,
        ref: str,
        ignore_errors: bool = False,
        env: Optional[Mapping[str, str]] = None,
    ) -> str:
        """Run the scan and return its combined output.

        Raises ``subprocess.CalledProcessError`` when the scanner fails.
        """
        return _run(self.args(ref, ignore_errors), env)


def download_db_args() -> list[str]:
    """The command line that only downloads the vulnerability database."""
    return [
        "trivy",
        "image",
        "--download-db-only",
        f"--db-repository={TRIVY_DB_REPOSITORY}",
    ]


def download_db(env: Optional[Mapping[str, str]] = None) -> str:
    """Download the vulnerability database and return the scanner's output."""
    return _run(download_db_args(), env)


class DockerAddress:
    """The Docker daemon address taken from the BuildKit address, resolved once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._address: Optional[str] = None

    def addr(self) -> str:
        """The Docker host, or ``""`` when BuildKit is not reached through Docker."""
        with self._lock:
            if self._address is None:
                configured = os.environ.get(BUILDKIT_ADDR_ENV, "")
                if configured.startswith(DOCKER_SCHEME):
                    self._address = configured[len(DOCKER_SCHEME):]
                else:
                    self._address = ""
            return self._address

    def set(self, value: str) -> None:
        """Override the address."""
        with self._lock:
            self._address = value

    def env(self) -> dict[str, str]:
        """Environment variables that point Docker clients at the address."""
        value = self.addr()
        return {"DOCKER_HOST": value} if value else {}


DOCKER_DIND_ADDRESS = DockerAddress()


def validate_vex_json(directory: Union[str, Path]) -> Any:
    """Check that ``vex.json`` in ``directory`` exists and is valid JSON; return it."""
    vex_file = Path(directory) / "vex.json"
    if not vex_file.exists():
        raise FileNotFoundError(f"VEX file does not exist: {vex_file}")
    content = vex_file.read_bytes()
    try:
        document = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValueError(f"VEX file contains invalid JSON: {exc}") from exc
    log.debug("VEX file is valid JSON with %d bytes", len(content))
    return document