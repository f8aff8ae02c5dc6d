"""
Operator prompts — the one place a pipeline may ask a human.

Only the hostname step needs input.  It receives a ``Prompter``; the CLI
passes ``ClickPrompter`` (numbered menu on the terminal) or, with
``--hostname``, a ``ScriptedPrompter`` so the run stays non-interactive.
"""

from __future__ import annotations

from typing import Protocol, Sequence

import click


class Prompter(Protocol):
    def choose(self, prompt: str, options: Sequence[str]) -> str:
        """Return one of ``options``."""
        ...


class ClickPrompter:
    """Numbered menu, re-asks until a valid number is entered."""

    def choose(self, prompt: str, options: Sequence[str]) -> str:
        if not options:
            raise ValueError("Nothing to choose from")
        click.echo(prompt)
        for i, option in enumerate(options, start=1):
            click.echo(f"  {i}) {option}")
        index = click.prompt("Selection", type=click.IntRange(1, len(options)))
        return options[index - 1]


class ScriptedPrompter:
    """Replays pre-recorded answers, in order."""

    def __init__(self, answers: Sequence[str]):
        self._answers = list(answers)
        self.asked: list[str] = []

    def choose(self, prompt: str, options: Sequence[str]) -> str:
        self.asked.append(prompt)
        if not self._answers:
            raise ValueError(f"No scripted answer left for: {prompt}")
        answer = self._answers.pop(0)
        if answer not in options:
            raise ValueError(f"Scripted answer {answer!r} is not one of {list(options)}")
        return answer
