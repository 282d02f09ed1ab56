# Copyright 2025 KTTC AI (https://github.com/kttc-ai)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""Main CLI application entry point for l10ntm.

All commands are organized in separate modules under `l10ntm.cli.commands/`.
"""

from __future__ import annotations

import typer

from l10ntm import __version__
from l10ntm.cli.commands.tm import tm_app
from l10ntm.utils.console import console

# Create main app
app = typer.Typer(
    name="l10ntm",
    help="l10ntm - translation memory for localization pipelines",
    add_completion=True,
    rich_markup_mode="rich",
    no_args_is_help=True,
)

# Add sub-apps for grouped commands
app.add_typer(tm_app, name="tm")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"l10ntm version: [bold cyan]{__version__}[/bold cyan]")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(  # noqa: ARG001 - Used by Typer callback
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    l10ntm - translation memory for localization pipelines.

    Keeps a local SQLite TM and synchronizes it with shared TM stores.
    """
    pass


def run() -> None:
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    run()
