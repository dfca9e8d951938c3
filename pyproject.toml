[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flowtriggers"
version = "0.9.0"
description = "Event triggers for flow engines: REST with CORS, CLI, TCP, timer, in-process channel and load testing"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "trigger",
    "flow",
    "rest",
    "cors",
    "cli",
    "tcp",
    "timer",
    "load-testing",
]
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
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["flowtriggers"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
