# crateval

Python building blocks for evaluating Rust code interactively. The package
does the bookkeeping around user code that is sent to `rustc` and `cargo`:
where each piece of code came from, how compiler diagnostics map back onto
the user's lines, how dependencies are described and checked, and how the
child process that runs compiled code is started and spoken to.

## Modules

- `crateval.code_block`
  - `CodeBlock.from_original_user_code(user_code, split_statements=None)`
    splits input into leading `:command` lines (`Command` segments holding a
    `CommandCall`) followed by user code (`OriginalUserCode` segments holding
    `UserCodeMetadata`). Blank lines and `//` comment lines between commands
    are skipped; commands after the first line of code are not recognised.
    Without a `split_statements` callable the code is one `Statement`; pass a
    callable returning `Statement` objects to split it further.
  - `CodeBlock` builds generated source (`generated`, `other_user_code`,
    `code_with_fallback`, `with_code`, `with_segment`, `add_all`,
    `load_variable`, `pack_variable`), maps lines to their origin
    (`origin_for_line`), converts byte offsets between user input and output
    (`user_offset_to_output_offset`, `output_offset_to_user_offset`), finds
    the command under an offset (`command_containing_user_offset`) and swaps
    in fallbacks (`apply_fallback`). Offsets are UTF-8 byte offsets; columns
    are counted in characters (`count_columns`).
  - The segment kinds are `OriginalUserCode`, `OtherUserCode`,
    `PackVariable`, `WithFallback`, `OtherGeneratedCode`, `Command` and
    `Unknown`; `is_user_supplied(kind)` tells which came from the user.
- `crateval.errors`
  - `CompilationError.from_json(json_value, code_block)` turns one parsed
    compiler JSON diagnostic into an error whose `SpannedMessage`s carry
    `Span`s in the user's lines and columns. It returns `None` for summary
    messages such as "aborting due to ...". Spans that fall in generated code
    are dropped when a user-code span exists.
  - `CompilationError` offers `code()`, `explanation()`, `help()`,
    `rendered()`, `primary_spanned_message()`, `is_from_user_code()`,
    `is_from_generated_code()`, `evcxr_extra_hint()` and `fill_lines()`.
  - `build_report(file_name, source, theme)` returns a `Report` (message,
    code, `ReportLabel`s with byte ranges and palette colours chosen for a
    `Theme.LIGHT` or `Theme.DARK` terminal, and a note), or `None` when the
    source is not ASCII. The report is plain data; nothing here draws it.
  - Helpers: `span_to_byte_range`, `line_and_column`, `sanitize_message`.
- `crateval.exceptions` holds `EvalError` and its subclasses
  `CompilationErrors`, `TypeRedefinedVariablesLost` and
  `SubprocessTerminated`.
- `crateval.crate_config`
  - `escape_toml_string` escapes text for a TOML basic string.
  - `make_paths_absolute` rewrites a relative `path = "..."` to its canonical
    absolute form, raising `EvalError` if the path does not exist.
  - `ExternalCrate.from_config(name, config)` builds a dependency with its
    paths made absolute.
- `crateval.cargo_metadata`
  - `library_names_from_metadata(metadata)` reads `cargo metadata` JSON and
    returns the library names of the first workspace member's direct
    dependencies, with `-` replaced by `_`.
  - `get_library_names(crate_dir, cargo_command=None)` runs
    `cargo metadata --format-version 1` in `crate_dir` and does the same.
  - `validate_dep(dep, dep_config, crate_dir, cargo_command=None)` writes a
    throwaway `Cargo.toml` into `crate_dir` (replacing any there) and raises
    `EvalError` with cargo's explanation if the dependency does not resolve
    or has no lib target.
  - `parse_crate_name(path)` reads the package name from `path/Cargo.toml`;
    workspaces are rejected.
  - `cargo_command` is a callable taking a subcommand and returning the
    argument list to run; by default it is `["cargo", subcommand]`.
- `crateval.child_process`
  - `ChildProcess(command, stderr_sink, user_args=None)` starts a process
    with piped streams, sending each stderr line to `stderr_sink`. Arguments
    after `--` in `sys.argv` are passed on when `user_args` is not given
    (`user_args_from_argv`). It sets `CRATEVAL_IS_RUNTIME=1` and
    `RUST_BACKTRACE=1` in the child's environment and refuses to start when
    `CRATEVAL_IS_RUNTIME` is already set.
  - `send(line)` and `recv_line()` exchange lines; when the process has gone
    they raise `SubprocessTerminated` with its remaining output and status.
  - `restart()` kills the process if needed and returns a new `ChildProcess`;
    the `ProcessHandle` from `process_handle()` (`kill`, `wait`, `poll`)
    keeps pointing at the current process. `close()`, or leaving a `with`
    block, closes stdin and waits for the process.
- `crateval.crash_guard.CrashGuard(callback)` is a context manager that calls
  `callback` on exit unless `disarm()` was called.

## What it does not do

There is no REPL, evaluation context or command interpreter here: the package
does not execute `:command` lines, compile or run code, keep variables between
evaluations, offer completions, or split Rust code into statements by itself.
It provides the pieces such a tool is built from.

## Install

```
pip install .
```

Running the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from crateval.code_block import CodeBlock

user_block, info = CodeBlock.from_original_user_code(":dep regex\nlet x = 1;")
code = CodeBlock().generated("fn main() {").add_all(user_block).generated("}")
print(code.code_string())
print(code.origin_for_line(1))
```

```python
from crateval.crate_config import ExternalCrate, escape_toml_string

print(escape_toml_string('a "quoted" path'))
dep = ExternalCrate.from_config("foo", '{ path = "." }')
print(dep.config)
```

Functions that run cargo need `cargo` on the `PATH` unless another
`cargo_command` is given.