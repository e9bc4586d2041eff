[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kdisrupt"
version = "0.1.0"
description = "Helpers for Kubernetes test clusters: kind clusters, pod and service helpers, fakes, fixtures and service checks"
requires-python = ">=3.10"
keywords = ["kubernetes", "kind", "testing", "e2e", "fixtures", "fakes"]
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
    "Topic :: Software Development :: Testing",
    "Topic :: System :: Clustering",
]
dependencies = [
    "pyyaml",
    "requests",
    "websocket-client",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["kdisrupt"]

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
ignore_missing_imports = true
