[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "copatool"
version = "0.1.0"
description = "Building blocks for patching container images from vulnerability scan reports"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "containers",
    "oci",
    "docker",
    "podman",
    "buildkit",
    "buildx",
    "trivy",
    "vulnerability",
    "patching",
    "multi-platform",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: System :: Software Distribution",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["copatool"]

[tool.hatch.build.targets.sdist]
include = ["copatool", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP", "SIM"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
