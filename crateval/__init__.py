"""Building blocks for evaluating Rust code interactively: code blocks,
compiler diagnostics, crate configuration, cargo metadata and child processes."""

__version__ = "0.1.0"

__all__ = [
    "cargo_metadata",
    "child_process",
    "code_block",
    "crash_guard",
    "crate_config",
    "errors",
    "exceptions",
]