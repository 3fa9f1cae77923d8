[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "budva"
version = "0.1.0"
description = "Infrastructure for a chat-forwarding service: task queue, forwarding ruleset loader, key-value state store and terminal prompts"
requires-python = ">=3.10"
keywords = ["chat", "forwarding", "ruleset", "queue", "state", "yaml"]
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
    "Topic :: Communications :: Chat",
]
dependencies = [
    "pyyaml",
    "watchdog",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["budva"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
