[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pipecall"
version = "0.1.0"
description = "Named-pipe remote procedure calls between local processes with a compact typed binary wire format"
requires-python = ">=3.10"
dependencies = []
keywords = ["ipc", "rpc", "named-pipe", "fifo", "serialization", "interprocess"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Object Brokering",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["pipecall"]

[tool.hatch.build.targets.sdist]
include = ["pipecall", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
