"""
Agent definition loader.
========================
Reads ``*.md`` agent files from the agent directory. Each file may open with
a YAML frontmatter block::

    ---
    name: react-specialist
    description: Builds React component trees and hooks
    tags: [react, frontend, jsx]
    ---

The loader only produces raw records; validation, de-duplication and
ranking belong to ``AgentRegistry``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

AGENT_FILE_PATTERN = "*.md"
FRONTMATTER_FENCE = "---"


class AgentLoadError(Exception):
    """The configured agent directory cannot be used."""


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """
    Separates a leading ``---`` YAML block from the Markdown body. The block
    opens and closes on lines that hold nothing but ``---``.

    Raises:
        yaml.YAMLError: if the frontmatter is not valid YAML.
        ValueError: if the frontmatter is not a mapping.
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].rstrip() != FRONTMATTER_FENCE:
        return {}, text
    for index in range(1, len(lines)):
        if lines[index].rstrip() == FRONTMATTER_FENCE:
            break
    else:
        return {}, text
    meta = yaml.safe_load("".join(lines[1:index])) or {}
    if not isinstance(meta, dict):
        raise ValueError("frontmatter must be a mapping")
    return meta, "".join(lines[index + 1 :]).strip()


def _first_paragraph(body: str) -> str:
    lines: list[str] = []
    for line in body.splitlines():
        stripped = line.strip()
        if stripped.startswith("#"):
            if lines:
                break
            continue
        if not stripped:
            if lines:
                break
            continue
        lines.append(stripped)
    return " ".join(lines)


def parse_agent_file(path: Path) -> dict[str, Any]:
    """Turns one agent file into a raw record."""
    meta, body = split_frontmatter(path.read_text(encoding="utf-8"))
    description = meta.get("description")
    if description is None:
        description = _first_paragraph(body)
    tags = meta.get("tags", meta.get("contextTags"))
    return {
        "name": meta.get("name", path.stem),
        "description": description,
        "contextTags": tags,
        "source": str(path),
    }


def load_agent_records(agent_dir: Path) -> list[dict[str, Any]]:
    """
    Loads every agent file under ``agent_dir``, in sorted path order.

    Unreadable or unparsable files are skipped with a warning.

    Raises:
        AgentLoadError: if ``agent_dir`` is missing or not a directory.
    """
    agent_dir = Path(agent_dir)
    if not agent_dir.is_dir():
        raise AgentLoadError(f"Agent directory not found: {agent_dir}")

    records: list[dict[str, Any]] = []
    for path in sorted(agent_dir.rglob(AGENT_FILE_PATTERN)):
        if not path.is_file():
            continue
        try:
            records.append(parse_agent_file(path))
        except (OSError, UnicodeDecodeError, yaml.YAMLError, ValueError) as exc:
            logger.warning("Skipping unreadable agent file %s: %s", path, exc)
    logger.debug("Read %d agent file(s) from %s", len(records), agent_dir)
    return records
