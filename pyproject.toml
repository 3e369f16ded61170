[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "crateval"
version = "0.1.0"
description = "Building blocks for evaluating Rust code interactively: code blocks, compiler diagnostics, crate configuration, cargo metadata and child process management"
requires-python = ">=3.11"
dependencies = []
keywords = ["rust", "repl", "cargo", "rustc", "diagnostics", "interpreter"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Interpreters",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["crateval"]

[tool.pytest.ini_options]
addopts = "-ra"
