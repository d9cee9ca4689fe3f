"""
Instruction templates for extraction and answer synthesis.

Templates are plain ``str.format`` strings keyed by id. The built-in set can
be overridden per id by ``<prompts_dir>/<template_id>.txt``.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

EXTRACT_TRANSCRIPT = "extract_transcript"
EXTRACT_NOTES = "extract_notes"
SUMMARY = "summary"

EXTRACT_TRANSCRIPT_PROMPT = """You are analyzing the transcript of a lecture.

Split the lecture into topically coherent knowledge items. Each item covers one
sub-topic the lecturer explains. Extract ONLY what is stated or strongly implied
in the transcript. Do not invent information. Skip greetings, logistics and
small talk. If the transcript contains no teachable content, return an empty array.

Respond with a JSON array, one object per item, in the order the topics appear:

```json
[
  {{"topic": "short title", "content": "self-contained explanation of the topic"}}
]
```

---

TRANSCRIPT:

{input}

---

Extract the knowledge items as JSON:"""

EXTRACT_NOTES_PROMPT = """You are analyzing course notes that cover a single topic.

Summarize the whole document as ONE knowledge item: a short title and a
self-contained explanation that keeps every fact, definition and example the
notes give. Do not invent information.

Respond with a single JSON object:

```json
{{"topic": "short title", "content": "self-contained explanation"}}
```

---

NOTES:

{input}

---

Summarize the notes as JSON:"""

SUMMARY_PROMPT = """Answer the question using only the knowledge below.
Summarize the relevant part in a few clear sentences. If the knowledge does not
address the question, say so briefly.

KNOWLEDGE:
{input}

QUESTION:
{question}

ANSWER:"""

DEFAULT_TEMPLATES: dict[str, str] = {
    EXTRACT_TRANSCRIPT: EXTRACT_TRANSCRIPT_PROMPT,
    EXTRACT_NOTES: EXTRACT_NOTES_PROMPT,
    SUMMARY: SUMMARY_PROMPT,
}


def load_templates(prompts_dir: Path | str | None = None) -> dict[str, str]:
    """
    Load instruction templates.

    Args:
        prompts_dir: Directory of ``<template_id>.txt`` overrides (optional)

    Returns:
        Mapping of template id to template text
    """
    templates = dict(DEFAULT_TEMPLATES)
    if prompts_dir is None:
        return templates

    prompts_dir = Path(prompts_dir)
    if not prompts_dir.is_dir():
        logger.warning(f"Prompts directory not found, using built-in templates: {prompts_dir}")
        return templates

    for path in sorted(prompts_dir.glob("*.txt")):
        templates[path.stem] = path.read_text(encoding="utf-8")
        logger.debug(f"Loaded template override: {path.stem}")

    return templates


def render(template: str, input: str, **variables: str) -> str:
    """Fill a template's ``{input}`` and any extra placeholders."""
    return template.format(input=input, **variables)
