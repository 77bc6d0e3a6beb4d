"""Human confirmation channel.

Every destructive or remote-impacting step asks through a Prompter. With
assume_yes set, confirmations pass and prompts take their default.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Sequence

import typer
from rich.console import Console

from .errors import InvalidInput, UserAborted


class Prompter:
    """Yes/no and free-text prompts.

    Attributes:
        assume_yes: Skip confirmations (non-interactive use)
    """

    def __init__(
        self,
        assume_yes: bool = False,
        console: Optional[Console] = None,
        confirm_fn: Callable[..., bool] = typer.confirm,
        prompt_fn: Callable[..., Any] = typer.prompt,
    ) -> None:
        self.assume_yes = assume_yes
        self.console = console or Console()
        self._confirm = confirm_fn
        self._prompt = prompt_fn

    def confirm(self, message: str, default: bool = False) -> bool:
        if self.assume_yes:
            return True
        return bool(self._confirm(message, default=default))

    def choose_yes_no(self, message: str, default: bool = False) -> bool:
        """A yes/no choice that is not a confirmation gate. Non-interactive runs take the default."""
        if self.assume_yes:
            return default
        return bool(self._confirm(message, default=default))

    def confirm_or_abort(self, message: str, default: bool = False) -> None:
        """Ask a yes/no question and abort the workflow on "no".

        Raises:
            UserAborted: If the operator declines
        """
        if not self.confirm(message, default=default):
            raise UserAborted()

    def ask(self, message: str, default: Optional[str] = None) -> str:
        """Ask for free text.

        Raises:
            InvalidInput: If running non-interactively with no default
        """
        if self.assume_yes:
            if default is None:
                raise InvalidInput(f"cannot answer without a prompt: {message}")
            return default
        if default is None:
            return str(self._prompt(message))
        return str(self._prompt(message, default=default))

    def choose(self, message: str, choices: Sequence[str]) -> str:
        """Pick one of several choices by number.

        Raises:
            InvalidInput: If there are no choices, or non-interactive with several
        """
        if not choices:
            raise InvalidInput("nothing to choose from")
        if len(choices) == 1 and self.assume_yes:
            return choices[0]
        if self.assume_yes:
            raise InvalidInput(f"cannot choose non-interactively: {message}")

        self.console.print(message)
        for i, choice in enumerate(choices, start=1):
            self.console.print(f"  [cyan]{i}[/cyan]. {choice}")

        while True:
            answer = self._prompt("Enter a number", type=int)
            if 1 <= answer <= len(choices):
                return choices[answer - 1]
            self.console.print(f"Please enter a number between 1 and {len(choices)}", style="yellow")
