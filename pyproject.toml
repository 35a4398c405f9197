[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "proactornet"
version = "0.1.0"
description = "A completion-driven TCP networking library with coroutine connection handlers, timers and a loop-per-thread pool"
requires-python = ">=3.10"
dependencies = []
keywords = ["networking", "tcp", "proactor", "event-loop", "coroutines", "timers"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["proactornet"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
