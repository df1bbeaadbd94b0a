[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "labkv"
version = "0.1.0"
description = "A simulated RPC network, key/value message and model types, and a small MapReduce framework"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "distributed-systems",
    "mapreduce",
    "key-value",
    "rpc",
    "simulation",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
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

[project.scripts]
labkv-mrcoordinator = "labkv.coordinator:main"
labkv-mrworker = "labkv.worker:main"

[tool.hatch.build.targets.wheel]
packages = ["labkv"]

[tool.pytest.ini_options]
addopts = "-ra"
