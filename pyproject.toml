[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "morax"
version = "0.1.0"
description = "Task runtimes, consumer-group logic and a SQL-backed metadata service for a Kafka-compatible log broker"
requires-python = ">=3.10"
dependencies = [
    "sqlalchemy>=2.0",
]
keywords = [
    "kafka",
    "broker",
    "metadata",
    "consumer-group",
    "postgresql",
    "runtime",
    "wait-group",
]
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
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest>=7",
]

[project.scripts]
morax-xtask = "morax.tasks:main"

[tool.hatch.build.targets.wheel]
packages = ["morax"]

[tool.hatch.build.targets.sdist]
include = ["morax", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
