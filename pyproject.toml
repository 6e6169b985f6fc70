[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "yylog"
version = "0.1.0"
description = "Structured JSON logging with an asynchronous, rotating file writer and session-scoped fields"
requires-python = ">=3.10"
dependencies = []
keywords = ["logging", "json", "structured-logging", "log-rotation", "async"]
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
    "Topic :: System :: Logging",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["yylog"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
