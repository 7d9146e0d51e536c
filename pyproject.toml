[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ameca"
version = "0.1.0"
description = "A Discord moderation bot: automod patterns, AFK notices, warnings, reaction roles and message logging"
requires-python = ">=3.10"
keywords = ["discord", "bot", "moderation", "automod", "chat"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
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
    "aiohttp",
    "aiosqlite",
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
ameca = "ameca.main:main"

[tool.hatch.build.targets.wheel]
packages = ["ameca"]

[tool.pytest.ini_options]
addopts = "-ra"
