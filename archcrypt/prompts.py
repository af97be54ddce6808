"""Blocking stdin prompts: yes/no gates and free-text answers."""

from __future__ import annotations

from typing import Callable, Optional

from .executil import trace

InputFn = Callable[[str], str]


def confirm(prompt: str, input_fn: Optional[InputFn] = None) -> bool:
    """Return True only for an explicit ``y``/``yes``; empty input means no."""

    reader = input_fn or input
    try:
        answer = reader(f"{prompt} [y/N]: ").strip().lower()
    except EOFError:
        answer = ""
    accepted = answer in ("y", "yes")
    trace("prompt.confirm", prompt=prompt, accepted=accepted)
    return accepted


def ask(prompt: str, default: Optional[str] = None, input_fn: Optional[InputFn] = None) -> str:
    """Ask for a value, re-prompting until something non-empty is given.

    With a ``default`` an empty answer selects it. End of input propagates as
    ``EOFError``.
    """

    reader = input_fn or input
    label = f"{prompt} (default {default}): " if default else f"{prompt}: "
    while True:
        answer = reader(label).strip()
        if answer:
            break
        if default:
            answer = default
            break
    trace("prompt.ask", prompt=prompt, answer=answer)
    return answer
