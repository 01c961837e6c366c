from __future__ import annotations

import os
import re
from typing import Sequence

from jinja2 import Environment, FileSystemLoader

from .labels import CATEGORIES

# ─── Jinja2 Template Environment ─────────────────────────────────────────────
TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "templates", "prompts"
)
_jinja_env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), trim_blocks=True, lstrip_blocks=True)

_WHITESPACE = re.compile(r"\s+")


def clean_note(text: str) -> str:
    """Single-line, quote-safe rendering of a note for the numbered prompt list."""
    text = "".join(ch for ch in (text or "") if ch >= " " or ch in "\n\t")
    return _WHITESPACE.sub(" ", text).replace('"', "'").strip()


def build_probe_prompt() -> str:
    return _jinja_env.get_template("probe.txt").render().strip()


def build_single_prompt(note: str) -> str:
    return _jinja_env.get_template("categorize_single.txt").render(
        categories=CATEGORIES, note=clean_note(note)
    )


def build_batch_prompt(notes: Sequence[str]) -> str:
    return _jinja_env.get_template("categorize_batch.txt").render(
        categories=CATEGORIES, notes=[clean_note(n) for n in notes]
    )
