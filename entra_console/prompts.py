"""Line-oriented operator input/output."""
from __future__ import annotations

import typer


class Prompter:
    """Reads a line and writes a line; workflows never touch the terminal directly."""

    def ask(self, text: str) -> str:
        raise NotImplementedError

    def secret(self, text: str) -> str:
        raise NotImplementedError

    def confirm(self, text: str, default: bool = False) -> bool:
        raise NotImplementedError

    def echo(self, text: str = "") -> None:
        raise NotImplementedError

    def warn(self, text: str) -> None:
        self.echo(f"Warning: {text}")


class TyperPrompter(Prompter):
    def ask(self, text: str) -> str:
        return str(typer.prompt(text, default="", show_default=False)).strip()

    def secret(self, text: str) -> str:
        return str(typer.prompt(text, default="", show_default=False, hide_input=True))

    def confirm(self, text: str, default: bool = False) -> bool:
        return typer.confirm(text, default=default)

    def echo(self, text: str = "") -> None:
        typer.echo(text)

    def warn(self, text: str) -> None:
        typer.secho(f"Warning: {text}", fg=typer.colors.YELLOW)


__all__ = ["Prompter", "TyperPrompter"]
