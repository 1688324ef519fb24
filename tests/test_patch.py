import json

import pytest

from copatool.patch import (
    OSReleaseError,
    UnsupportedOSError,
    arch_tag,
    detect_loader_from_buildkit_addr,
    get_os_type,
    get_os_version,
    normalize_config_for_platform,
    parse_os_release,
    remove_if_not_debug,
    repo_name_with_digest,
    resolve_patched_tag,
)
from copatool.platforms import ARM64, LINUX, PatchPlatform, Platform
from copatool.reference import parse_normalized_named

DEBIAN = """PRETTY_NAME="Debian GNU/Linux 11 (bullseye)"
            NAME="Debian GNU/Linux"
            VERSION_ID="11"
            VERSION="11 (bullseye)"
            VERSION_CODENAME=bullseye
            ID=debian
            HOME_URL="https://www.example.com/"
            """

ALPINE = """NAME="Alpine Linux"
            ID=alpine
            VERSION_ID=3.7.3
            PRETTY_NAME="Alpine Linux v3.7"
            HOME_URL="http://example.com\""""

UBUNTU = """PRETTY_NAME="Ubuntu 22.04.4 LTS"
            NAME="Ubuntu"
            VERSION_ID="22.04"
            VERSION="22.04.4 LTS (Jammy Jellyfish)"
            VERSION_CODENAME=jammy
            ID=ubuntu
            ID_LIKE=debian
            UBUNTU_CODENAME=jammy"""

AMAZON = """NAME="Amazon Linux"
            VERSION="2023"
            ID="amzn"
            ID_LIKE="fedora"
            VERSION_ID="2023"
            PLATFORM_ID="platform:al2023"
            PRETTY_NAME="Amazon Linux 2023.3.20240312"
            ANSI_COLOR="0;33"
            SUPPORT_END="2028-03-15\""""

CENTOS = """NAME="CentOS Linux"
            VERSION="8"
            ID="centos"
            ID_LIKE="rhel fedora"
            VERSION_ID="8"
            PLATFORM_ID="platform:el8"
            PRETTY_NAME="CentOS Linux 8"
            CENTOS_MANTISBT_PROJECT_VERSION="8\""""

MARINER = """NAME="Common Base Linux Mariner"
            VERSION="2.0.20240117"
            ID=mariner
            VERSION_ID="2.0"
            PRETTY_NAME="CBL-Mariner/Linux"
            ANSI_COLOR="1;34\""""

AZURE = """NAME="Microsoft Azure Linux"
            VERSION="3.0.20240727"
            ID=azurelinux
            VERSION_ID="3.0"
            PRETTY_NAME="Microsoft Azure Linux 3.0"
            ANSI_COLOR="1;34\""""

REDHAT = """NAME="Red Hat Enterprise Linux"
            VERSION="8.9 (Ootpa)"
            ID="rhel"
            ID_LIKE="fedora"
            VERSION_ID="8.9"
            PRETTY_NAME="Red Hat Enterprise Linux 8.9 (Ootpa)"

            REDHAT_BUGZILLA_PRODUCT="Red Hat Enterprise Linux 8"
            REDHAT_BUGZILLA_PRODUCT_VERSION=8.9
            REDHAT_SUPPORT_PRODUCT_VERSION="8.9\""""

ROCKY = """NAME="Rocky Linux"
            VERSION="9.3 (Blue Onyx)"
            ID="rocky"
            ID_LIKE="rhel centos fedora"
            VERSION_ID="9.3"
            PRETTY_NAME="Rocky Linux 9.3 (Blue Onyx)"
            REDHAT_SUPPORT_PRODUCT="Rocky Linux"
            REDHAT_SUPPORT_PRODUCT_VERSION="9.3\""""

ORACLE7 = """NAME="Oracle Linux Server"
            VERSION="7.9"
            ID="ol"
            VARIANT="Server"
            VERSION_ID="7.9"
            PRETTY_NAME="Oracle Linux Server 7.9"

            ORACLE_SUPPORT_PRODUCT="Oracle Linux"
            ORACLE_SUPPORT_PRODUCT_VERSION=7.9"""

ORACLE8 = """NAME="Oracle Linux Server"
            VERSION="8.9"
            ID="ol"
            VERSION_ID="8.9"
            PLATFORM_ID="platform:el8"

            ORACLE_SUPPORT_PRODUCT_VERSION=8.9"""

ALMA = """NAME="AlmaLinux"
            VERSION="9.4 (Seafoam Ocelot)"
            ID="almalinux"
            VERSION_ID="9.4"
            PRETTY_NAME="AlmaLinux 9.4 (Seafoam Ocelot)"

            SUPPORT_END="2032-06-01"
            ALMALINUX_MANTISBT_PROJECT="AlmaLinux-9"
    \t\tALMALINUX_MANTISBT_PROJECT_VERSION="9.4"
            REDHAT_SUPPORT_PRODUCT_VERSION="9.4\""""

DEBIAN_SHORT = """PRETTY_NAME="Debian GNU/Linux 11 (bullseye)"
            NAME="Debian GNU/Linux"
            VERSION_ID="11"
            """

ALPINE_SHORT = """NAME="Alpine Linux"
            ID=alpine
            VERSION_ID=3.7.3"""


@pytest.mark.parametrize(
    "data, expected",
    [
        (DEBIAN, "debian"),
        (ALPINE, "alpine"),
        (UBUNTU, "ubuntu"),
        (AMAZON, "amazon"),
        (CENTOS, "centos"),
        (MARINER, "cbl-mariner"),
        (AZURE, "azurelinux"),
        (REDHAT, "redhat"),
        (ROCKY, "rocky"),
        (ORACLE7, "oracle"),
        (ORACLE8, "oracle"),
        (ALMA, "alma"),
        (DEBIAN_SHORT, "debian"),
        (ALPINE_SHORT, "alpine"),
    ],
)
def test_get_os_type(data, expected):
    assert get_os_type(data.encode()) == expected


@pytest.mark.parametrize(
    "data",
    [None, b"", b'NAME="SomeRandomOS"\n            ID=someos\n            VERSION_ID=1.0'],
)
def test_get_os_type_unsupported(data):
    with pytest.raises(UnsupportedOSError, match="unsupported operation"):
        get_os_type(data)


@pytest.mark.parametrize(
    "data, expected",
    [
        (DEBIAN, "11"),
        ('PRETTY_NAME="Debian GNU/Linux 11 (bullseye)"\n    VERSION_ID="11"\n    ID=debian', "11"),
    ],
)
def test_get_os_version(data, expected):
    assert get_os_version(data.encode()) == expected


def test_get_os_version_malformed():
    with pytest.raises(OSReleaseError) as excinfo:
        get_os_version(b"Cannot Parse Version_ID")
    assert str(excinfo.value) == (
        'unable to parse os-release data osrelease: malformed line "Cannot Parse Version_ID"'
    )


def test_get_repo_name_with_digest():
    assert (
        repo_name_with_digest("docker.io/library/nginx:1.21.6-patched", "sha256:mocked-digest")
        == "nginx@sha256:mocked-digest"
    )
    assert repo_name_with_digest("docker.io/library/nginx", "sha256:abc123") == "nginx@sha256:abc123"
    assert (
        repo_name_with_digest("localhost:5000/repo/image:mytag", "sha256:abcdef1234")
        == "image@sha256:abcdef1234"
    )
    assert repo_name_with_digest("myimage", "sha256:short") == "myimage@sha256:short"


@pytest.mark.parametrize(
    "image, explicit_tag, suffix, expected",
    [
        ("docker.io/library/nginx:1.23", "", "", "1.23-patched"),
        ("docker.io/library/nginx:1.23", "my-funky-tag", "xyz", "my-funky-tag"),
        ("docker.io/library/nginx:1.23", "", "security", "1.23-security"),
    ],
)
def test_resolve_patched_tag(image, explicit_tag, suffix, expected):
    ref = parse_normalized_named(image)
    assert resolve_patched_tag(ref, explicit_tag, suffix) == expected


@pytest.mark.parametrize("suffix", ["", "foo"])
def test_resolve_patched_tag_without_base_tag(suffix):
    ref = parse_normalized_named("docker.io/library/nginx")
    with pytest.raises(ValueError, match="no tag found"):
        resolve_patched_tag(ref, "", suffix)


@pytest.mark.parametrize(
    "base, arch, variant, expected",
    [
        ("patched", ARM64, "", "patched-arm64"),
        ("patched", "arm", "v7", "patched-arm-v7"),
        ("patched", "mips64", "n32", "patched-mips64-n32"),
    ],
)
def test_arch_tag(base, arch, variant, expected):
    assert arch_tag(base, arch, variant) == expected


def test_normalize_config_for_platform():
    orig = b'{"architecture":"amd64"}'
    plat = PatchPlatform(Platform(os=LINUX, architecture=ARM64, variant="v8"))
    fixed = json.loads(normalize_config_for_platform(orig, plat))
    assert fixed == {"architecture": ARM64, "os": LINUX, "variant": "v8"}

    plain = Platform(os=LINUX, architecture=ARM64)
    dropped = json.loads(normalize_config_for_platform(b'{"variant":"v8"}', plain))
    assert "variant" not in dropped
    assert dropped["architecture"] == ARM64


def test_normalize_config_without_platform():
    with pytest.raises(ValueError, match="platform is nil"):
        normalize_config_for_platform(b"{}", None)


@pytest.mark.parametrize(
    "addr, expected",
    [
        ("", ""),
        ("podman-container://buildkitd", "podman"),
        ("docker-container://buildkitd", "docker"),
        ("docker://", "docker"),
        ("buildx://mybuilder", "docker"),
        ("tcp://127.0.0.1:1234", ""),
        ("unix:///run/buildkit/buildkitd.sock", ""),
    ],
)
def test_detect_loader_from_buildkit_addr(addr, expected):
    assert detect_loader_from_buildkit_addr(addr) == expected


def test_remove_working_folder(tmp_path):
    folder = tmp_path / "work"
    folder.mkdir()
    (folder / "file").write_text("x")
    assert remove_if_not_debug(folder) is True
    assert not folder.exists()


def test_keep_working_folder_when_debug(tmp_path):
    folder = tmp_path / "work"
    folder.mkdir()
    assert remove_if_not_debug(folder, debug=True) is False
    assert folder.exists()


def test_remove_missing_folder_is_noop(tmp_path):
    folder = tmp_path / "gone"
    assert remove_if_not_debug(folder) is True
    assert not folder.exists()