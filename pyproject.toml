[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "svckit"
version = "0.1.0"
description = "Service building blocks: a hash set, an auto-refreshing cache and circuit breakers."
requires-python = ">=3.10"
dependencies = []
keywords = ["circuit-breaker", "cache", "hashset", "sliding-window", "metrics"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["svckit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
