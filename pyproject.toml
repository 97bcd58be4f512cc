[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "neonexcore"
version = "0.1.0"
description = "Building blocks for service applications: structured logging, metrics and alerts, notifications, RBAC, settings, service discovery, circuit breaking and traffic management."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "logging",
    "metrics",
    "alerts",
    "notifications",
    "rbac",
    "circuit-breaker",
    "service-discovery",
    "canary",
    "ab-testing",
    "settings",
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
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Topic :: System :: Logging",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["neonexcore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
