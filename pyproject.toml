[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "minbft"
version = "0.1.0"
description = "Message handling core of a MinBFT Byzantine fault tolerant replication protocol"
requires-python = ">=3.10"
dependencies = []
keywords = ["bft", "byzantine", "consensus", "replication", "usig", "distributed"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["minbft"]

[tool.pytest.ini_options]
addopts = "-ra"
