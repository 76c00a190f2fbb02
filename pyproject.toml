[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pqgchrouter"
version = "0.1.0"
description = "A line-delimited JSON message router for clustered group key exchange sessions"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "chat",
    "router",
    "relay",
    "asyncio",
    "group-key-exchange",
    "json-lines",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
pqgch-router = "pqgchrouter.server:main"

[tool.hatch.build.targets.wheel]
packages = ["pqgchrouter"]

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
