[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "etfcodec"
version = "0.1.0"
description = "Binary encoder and decoder for dataclass records in the .etf format, with optional LZ4 compression"
requires-python = ">=3.10"
dependencies = [
    "lz4",
]
keywords = ["serialization", "binary", "lz4", "dataclasses", "etf", "encoding"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: File Formats",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["etfcodec"]

[tool.hatch.build.targets.sdist]
include = ["etfcodec", "tests"]

[tool.pytest.ini_options]
testpaths = ["tests"]
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
