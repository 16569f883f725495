[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mealflow"
version = "0.1.0"
description = "Fetch, cache and query campus card meal transactions."
requires-python = ">=3.10"
keywords = ["meal", "transactions", "campus card", "spending", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial :: Accounting",
]
dependencies = [
    "requests",
    "platformdirs",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
mealflow = "mealflow.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["mealflow"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
