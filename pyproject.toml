[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "trainops"
version = "0.1.0"
description = "Reconciliation building blocks for distributed training jobs: pods, services, gang scheduling and job status."
requires-python = ">=3.10"
dependencies = []
keywords = ["training", "reconciler", "operator", "distributed", "scheduling", "gang-scheduling"]
classifiers = [
    "Development Status :: 4 - Beta",
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
packages = ["trainops"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
