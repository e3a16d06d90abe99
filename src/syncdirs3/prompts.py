"""
Interactive prompting, kept behind a small interface so a run can be
driven by a terminal or by a script.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import click


class Prompter(ABC):
    """Asks the user questions and returns typed answers."""

    @abstractmethod
    def question(self, text: str, hidden: bool = False, confirm: bool = False) -> str:
        """Ask for a line of text.

        Args:
            text: Prompt shown to the user.
            hidden: Do not echo the answer (passwords, secrets).
            confirm: Ask twice and require both answers to match.
        """

    @abstractmethod
    def yes_no(self, text: str, default: bool = False) -> bool:
        """Ask a yes/no question."""


class ClickPrompter(Prompter):
    """Terminal prompter built on click."""

    def question(self, text: str, hidden: bool = False, confirm: bool = False) -> str:
        return click.prompt(
            text,
            hide_input=hidden,
            confirmation_prompt=confirm,
            type=str,
        )

    def yes_no(self, text: str, default: bool = False) -> bool:
        return click.confirm(text, default=default)
