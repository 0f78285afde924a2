[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "courtfetch"
version = "0.1.0"
description = "Web service that looks up court case status, parties and orders over HTTP, caches the results and keeps a log of every query."
requires-python = ">=3.10"
keywords = ["court", "case-status", "scraper", "flask", "legal", "orders"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Legal Industry",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
]
dependencies = [
    "flask>=2.3",
    "sqlalchemy>=2.0",
    "httpx>=0.24",
    "beautifulsoup4>=4.12",
    "python-dotenv>=1.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "respx>=0.20",
]

[project.scripts]
courtfetch = "courtfetch.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["courtfetch"]

[tool.hatch.build.targets.sdist]
include = ["courtfetch", "tests", "pyproject.toml", "README.md"]

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
