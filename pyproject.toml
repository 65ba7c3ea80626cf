[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "jinjacore"
version = "0.1.0"
description = "Lexer, syntax tree nodes, closure analysis and bytecode generator for a Jinja-style template language"
requires-python = ">=3.10"
dependencies = []
keywords = ["jinja", "templates", "lexer", "compiler", "bytecode"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Compilers",
    "Topic :: Text Processing :: Markup",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["jinjacore"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
