[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sftpserve"
version = "0.1.0"
description = "An SFTP (SSH File Transfer Protocol, version 3) server subsystem that serves the local filesystem over a pair of streams."
requires-python = ">=3.10"
dependencies = []
keywords = ["sftp", "ssh", "file transfer", "server", "subsystem"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: File Transfer Protocol (FTP)",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
sftpserve = "sftpserve.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["sftpserve"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
