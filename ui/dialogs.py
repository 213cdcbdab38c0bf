"""Tk prompt helpers used as confirmation callbacks by the synchronizer."""

from __future__ import annotations

import tkinter as tk
from tkinter import messagebox, simpledialog
from typing import Callable, Optional, Sequence, Tuple

from core.synchronizer import DISCARD

TITLE = "StockGrid"


def confirm(master: tk.Misc) -> Callable[[str], bool]:
    def _ask(message: str) -> bool:
        return bool(messagebox.askyesno(TITLE, message, parent=master))

    return _ask


def ask_text(master: tk.Misc) -> Callable[[str], Optional[str]]:
    def _ask(prompt: str) -> Optional[str]:
        return simpledialog.askstring(TITLE, prompt, parent=master)

    return _ask


def parse_destination(answer: Optional[str], options: Sequence[Tuple[int, str]]) -> Optional[int]:
    """Translate the reassignment answer into a synchronizer choice.

    ``None`` (dialog cancelled) cancels, an empty answer discards, and a
    1-based number picks an entry of ``options``.  Anything else raises
    :class:`ValueError`.
    """

    if answer is None:
        return None
    text = answer.strip()
    if not text:
        return DISCARD
    position = int(text)
    if not 1 <= position <= len(options):
        raise ValueError(f"Choose a number between 1 and {len(options)}.")
    return options[position - 1][0]


def choose_destination(master: tk.Misc) -> Callable[[str, int, Sequence[Tuple[int, str]]], Optional[int]]:
    def _choose(area: str, total: int, options: Sequence[Tuple[int, str]]) -> Optional[int]:
        if not options:
            message = f'"{area}" is the only area. Delete it and discard its total of {total}?'
            return DISCARD if messagebox.askyesno(TITLE, message, parent=master) else None

        listing = "\n".join(f"{number}. {name}" for number, (_index, name) in enumerate(options, start=1))
        prompt = (
            f'Delete area "{area}" (total {total}).\n\n'
            f"Move its quantities to another area? Enter a number:\n{listing}\n\n"
            "Leave empty to discard the quantities."
        )
        while True:
            answer = simpledialog.askstring(TITLE, prompt, parent=master)
            try:
                return parse_destination(answer, options)
            except ValueError as exc:
                messagebox.showwarning(TITLE, f"Invalid choice: {exc}", parent=master)

    return _choose


def show_error(master: tk.Misc, message: str) -> None:
    messagebox.showerror(TITLE, message, parent=master)


def show_info(master: tk.Misc, message: str) -> None:
    messagebox.showinfo(TITLE, message, parent=master)
