[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "storagekit"
version = "0.1.0"
description = "File storage helpers: S3-compatible object storage access, Hasura metadata setup and admin-secret WSGI middleware."
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["s3", "object-storage", "hasura", "graphql", "wsgi", "presigned-url"]
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
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["storagekit"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]
