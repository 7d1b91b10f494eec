from __future__ import annotations

import os

from rich.console import Console


class Output:
    def __init__(self, *, no_color: bool = False) -> None:
        no_color = no_color or bool(os.getenv("NO_COLOR"))
        self.out = Console(no_color=no_color, highlight=False, soft_wrap=True)
        self.err = Console(stderr=True, no_color=no_color, highlight=False, soft_wrap=True)

    def _print(self, console: Console, msg: str, style: str) -> None:
        # markup stays off: messages contain literal "[dry-run]" tags and paths.
        console.print(msg, style=style, markup=False)

    def info(self, msg: str) -> None:
        self._print(self.out, msg, "cyan")

    def success(self, msg: str) -> None:
        self._print(self.out, msg, "green")

    def dim(self, msg: str) -> None:
        self._print(self.out, msg, "dim")

    def warn(self, msg: str) -> None:
        self._print(self.err, msg, "yellow")

    def error(self, msg: str) -> None:
        self._print(self.err, msg, "red")

    def header(self, title: str) -> None:
        self.out.print()
        self._print(self.out, f"  {title}", "bold cyan")
        self.out.print()
