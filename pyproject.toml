[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tlsnode"
version = "0.1.0"
description = "TLS context configuration, node identity extraction, rate limiting, timers and a pipelined asyncio HTTP server"
requires-python = ">=3.10"
keywords = ["tls", "ssl", "http", "server", "rate-limiter", "timer", "asyncio", "node"]
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
    "Framework :: AsyncIO",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "cryptography",
    "h11",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "cryptography",
]

[tool.hatch.build.targets.wheel]
packages = ["tlsnode"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
