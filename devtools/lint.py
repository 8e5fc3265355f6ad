"""Run the media-canon linters: codespell, ruff and basedpyright."""

import subprocess
import sys

from funlog import log_calls
from rich import get_console, reconfigure
from rich import print as rprint

SRC_PATHS = ["src", "tests", "devtools"]

reconfigure(emoji=not get_console().options.legacy_windows)


@log_calls(level="warning", show_timing_only=True)
def run(cmd: list[str], expect_in_stdout: str | None = None) -> int:
    """Run one tool; 1 on a non-zero exit or when the expected marker is missing."""
    rprint(f"\n[bold green]>> {' '.join(cmd)}[/bold green]")
    try:
        result = subprocess.run(cmd, text=True, capture_output=expect_in_stdout is not None)
    except KeyboardInterrupt:
        rprint("[yellow]Cancelled[/yellow]")
        return 1
    except FileNotFoundError as e:
        rprint(f"[bold red]{cmd[0]} is not installed: {e}[/bold red]")
        return 1

    if expect_in_stdout is not None:
        rprint(result.stdout)
        if result.stderr:
            rprint(result.stderr)
        return 0 if expect_in_stdout in result.stdout else 1
    return 0 if result.returncode == 0 else 1


def main(fix: bool = True) -> int:
    ruff_check = ["ruff", "check", *(["--fix"] if fix else []), *SRC_PATHS]
    ruff_format = ["ruff", "format", *([] if fix else ["--check"]), *SRC_PATHS]
    codespell = ["codespell", *(["--write-changes"] if fix else []), *SRC_PATHS]

    errcount = sum(
        [
            run(codespell),
            run(ruff_check),
            run(ruff_format),
            run(["basedpyright", "--level", "error", *SRC_PATHS], expect_in_stdout="0 errors"),
        ]
    )

    if errcount:
        rprint(f"\n[bold red]:x: Lint failed ({errcount} tools reported problems).[/bold red]")
    else:
        rprint("\n[bold green]:white_check_mark: Lint passed![/bold green]")
    return errcount


if __name__ == "__main__":
    sys.exit(main(fix="--check" not in sys.argv[1:]))
