[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nostrtalk"
version = "0.1.0"
description = "Asyncio SQLite storage for a Nostr chat client: events, direct messages, channels, contacts, relays and caches."
requires-python = ">=3.10"
keywords = ["nostr", "chat", "sqlite", "asyncio", "direct-messages", "channels", "relay", "nip-04"]
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
    "Framework :: AsyncIO",
    "Topic :: Communications :: Chat",
    "Topic :: Database",
]
dependencies = [
    "aiosqlite",
    "platformdirs",
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["nostrtalk"]

[tool.hatch.build.targets.sdist]
include = ["nostrtalk", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
