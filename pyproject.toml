[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "elfdwarf"
version = "0.1.0"
description = "Pure-Python readers for ELF images, DWARF line tables and process address-space maps"
requires-python = ">=3.10"
dependencies = []
keywords = ["elf", "dwarf", "debugging", "symbols", "line-tables", "binary", "proc-maps"]
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
    "Topic :: Software Development :: Debuggers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["elfdwarf"]

[tool.hatch.build.targets.sdist]
include = ["elfdwarf", "tests"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
