[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "restgate"
version = "0.1.0"
description = "REST gateway helpers: status mapping, error and success envelopes, field selection and field presence for RPC-backed HTTP APIs"
requires-python = ">=3.10"
dependencies = []
keywords = ["rest", "gateway", "rpc", "http", "status", "field-mask", "metadata"]
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
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["restgate"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
