import json
import os
import subprocess

import pytest

from copatool.scanner import (
    DockerAddress,
    ScannerCommand,
    download_db,
    download_db_args,
    validate_vex_json,
)

BASE_ARGS = [
    "trivy",
    "image",
    "--quiet",
    "--pkg-types=os",
    "--ignore-unfixed",
    "--scanners=vuln",
]

_FAKE_TRIVY = """#!/bin/sh
echo "$@"
echo "host=$DOCKER_HOST"
exit "${FAKE_EXIT:-0}"
"""


@pytest.fixture
def fake_trivy(tmp_path, monkeypatch):
    script = tmp_path / "trivy"
    script.write_text(_FAKE_TRIVY)
    script.chmod(0o755)
    monkeypatch.setenv("PATH", str(tmp_path) + os.pathsep + os.environ.get("PATH", ""))
    monkeypatch.delenv("FAKE_EXIT", raising=False)
    return script


def test_default_args():
    assert ScannerCommand().args("alpine:3.19") == BASE_ARGS + ["alpine:3.19"]


def test_all_options_in_order():
    command = ScannerCommand(
        output="report.json",
        skip_db_update=True,
        ignore_file="ignore.rego",
        exit_code=1,
        platform="linux/arm64",
        image_src="docker",
    )
    assert command.args("img:1") == BASE_ARGS + [
        "-o=report.json",
        "-f=json",
        "--skip-db-update",
        "--ignore-policy=ignore.rego",
        "--exit-code=1",
        "--platform=linux/arm64",
        "--image-src=docker",
        "img:1",
    ]


def test_exit_code_dropped_when_ignoring_errors():
    args = ScannerCommand(exit_code=1).args("img:1", ignore_errors=True)
    assert not any(arg.startswith("--exit-code") for arg in args)
    assert args[-1] == "img:1"


def test_scan_runs_scanner_with_env(fake_trivy):
    output = ScannerCommand(skip_db_update=True).scan(
        "img:1", env={"DOCKER_HOST": "tcp://127.0.0.1:2375"}
    )
    lines = output.splitlines()
    assert lines[0].split() == BASE_ARGS[1:] + ["--skip-db-update", "img:1"]
    assert lines[1] == "host=tcp://127.0.0.1:2375"


def test_scan_failure_raises(fake_trivy, monkeypatch):
    monkeypatch.setenv("FAKE_EXIT", "3")
    with pytest.raises(subprocess.CalledProcessError) as info:
        ScannerCommand().scan("img:1")
    assert info.value.returncode == 3
    assert "img:1" in info.value.output


def test_download_db_args():
    args = download_db_args()
    assert args[:3] == ["trivy", "image", "--download-db-only"]
    assert args[3].startswith("--db-repository=")


def test_download_db_runs_scanner(fake_trivy):
    output = download_db()
    assert output.splitlines()[0].split() == download_db_args()[1:]


def test_docker_address_from_env(monkeypatch):
    monkeypatch.setenv("COPA_BUILDKIT_ADDR", "docker://tcp://127.0.0.1:2375")
    address = DockerAddress()
    assert address.addr() == "tcp://127.0.0.1:2375"
    assert address.env() == {"DOCKER_HOST": "tcp://127.0.0.1:2375"}


def test_docker_address_ignores_other_schemes(monkeypatch):
    monkeypatch.setenv("COPA_BUILDKIT_ADDR", "unix:///run/buildkit/buildkitd.sock")
    address = DockerAddress()
    assert address.addr() == ""
    assert address.env() == {}


def test_docker_address_is_cached(monkeypatch):
    monkeypatch.setenv("COPA_BUILDKIT_ADDR", "docker://first")
    address = DockerAddress()
    assert address.addr() == "first"
    monkeypatch.setenv("COPA_BUILDKIT_ADDR", "docker://second")
    assert address.addr() == "first"


def test_docker_address_set_overrides(monkeypatch):
    monkeypatch.delenv("COPA_BUILDKIT_ADDR", raising=False)
    address = DockerAddress()
    address.set("tcp://10.0.0.1:2375")
    assert address.addr() == "tcp://10.0.0.1:2375"


def test_validate_vex_json_returns_document(tmp_path):
    document = {"@context": "openvex", "statements": []}
    (tmp_path / "vex.json").write_text(json.dumps(document))
    assert validate_vex_json(tmp_path) == document


def test_validate_vex_json_missing(tmp_path):
    with pytest.raises(FileNotFoundError, match="VEX file does not exist"):
        validate_vex_json(tmp_path)


def test_validate_vex_json_invalid(tmp_path):
    (tmp_path / "vex.json").write_text("{broken")
    with pytest.raises(ValueError, match="invalid JSON"):
        validate_vex_json(tmp_path)