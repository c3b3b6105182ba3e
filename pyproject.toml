[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "venusminer"
version = "0.1.0"
description = "Building blocks for a Filecoin block-producing miner: event journal, block stores, datastore backups and slash filtering"
requires-python = ">=3.10"
dependencies = []
keywords = ["filecoin", "miner", "blockstore", "journal", "slashfilter", "datastore", "cid"]
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
packages = ["venusminer"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]
