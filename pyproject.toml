[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "claimmapper"
version = "0.1.0"
description = "HTTP service that maps identity-token roles to context-specific claims"
requires-python = ">=3.10"
keywords = ["claims", "roles", "jwt", "oidc", "authorization", "rest", "flask"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "cryptography",
    "flask",
    "pyjwt",
    "requests",
    "sqlalchemy",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
claimmapper = "claimmapper.server:main"

[tool.hatch.build.targets.wheel]
packages = ["claimmapper"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
