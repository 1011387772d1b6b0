[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pixeldump"
version = "0.1.0"
description = "Bug-report log collection, dumpstate sections, GPT/devinfo handling and A/B boot slot control for Pixel-style Linux devices"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "bugreport",
    "dumpstate",
    "diagnostics",
    "gpt",
    "devinfo",
    "boot-control",
    "system-properties",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Boot",
    "Topic :: System :: Logging",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
pixeldump-collect = "pixeldump.log_collectors:main"

[tool.hatch.build.targets.wheel]
packages = ["pixeldump"]

[tool.hatch.build.targets.sdist]
include = ["pixeldump", "tests", "pyproject.toml", "README.md"]

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
