"""Parsing utilities for authoritative work documents."""

from __future__ import annotations

import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..storage.models import Criterion
from .models import PRDDocument, PRDFrontmatter

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+(?P<title>.+?)\s*#*\s*$")
_CHECKBOX_RE = re.compile(r"^\s*[-*+]\s+\[(?P<mark>[ xX])\]\s+(?P<text>.+?)\s*$")
_LABEL_RE = re.compile(r"^(?P<id>ISC-(?P<kind>[CA])\d+)\s*[:.\-]\s*(?P<text>.*)$", re.IGNORECASE)


class PRDParseError(RuntimeError):
    """Raised when a work document has no usable frontmatter."""


def split_frontmatter(content: str) -> tuple[str, str] | None:
    """Return ``(yaml_text, body)`` or None when the document has no header."""

    match = _FRONTMATTER_RE.match(content.lstrip("\ufeff"))
    if not match:
        return None
    return match.group(1), content.lstrip("\ufeff")[match.end():]


def parse_frontmatter(content: str) -> PRDFrontmatter:
    parts = split_frontmatter(content)
    if parts is None:
        raise PRDParseError("Document has no frontmatter block")
    header, _ = parts
    try:
        document = yaml.safe_load(header)
    except yaml.YAMLError as exc:  # pragma: no cover - library type
        raise PRDParseError(f"Failed to parse frontmatter YAML: {exc}") from exc
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise PRDParseError("Frontmatter must be a mapping")
    try:
        return PRDFrontmatter.model_validate(document)
    except ValidationError as exc:
        raise PRDParseError(f"Frontmatter validation error: {exc}") from exc


def parse_criteria(content: str) -> list[Criterion]:
    """Extract checkbox criteria.

    Labelled items (``ISC-C3: ...`` / ``ISC-A1: ...``) are read anywhere in
    the document; unlabelled checkboxes only under a heading that mentions
    criteria.
    """

    criteria: list[Criterion] = []
    seen: set[str] = set()
    in_section = False
    anti_section = False
    counters = {"criterion": 0, "anti-criterion": 0}

    for line in content.splitlines():
        heading = _HEADING_RE.match(line)
        if heading:
            title = heading.group("title").lower()
            in_section = "criteria" in title
            anti_section = in_section and "anti" in title
            continue

        checkbox = _CHECKBOX_RE.match(line)
        if not checkbox:
            continue
        status = "completed" if checkbox.group("mark").lower() == "x" else "pending"
        text = checkbox.group("text")

        label = _LABEL_RE.match(text)
        if label:
            item_id = label.group("id").upper()
            kind = "anti-criterion" if label.group("kind").upper() == "A" else "criterion"
            description = label.group("text").strip()
        elif in_section:
            kind = "anti-criterion" if anti_section else "criterion"
            counters[kind] += 1
            item_id = f"{'A' if kind == 'anti-criterion' else 'C'}{counters[kind]}"
            description = text.strip()
        else:
            continue

        if item_id in seen:
            continue
        seen.add(item_id)
        criteria.append(Criterion(id=item_id, description=description, type=kind, status=status))

    return criteria


def parse_prd(content: str) -> PRDDocument:
    """Decode a work document into frontmatter, criteria and body."""

    frontmatter = parse_frontmatter(content)
    parts = split_frontmatter(content)
    body = parts[1] if parts else ""
    return PRDDocument(frontmatter=frontmatter, criteria=parse_criteria(body), body=body)


def load_prd(path: Path) -> PRDDocument:
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise PRDParseError(f"Cannot read work document {path}: {exc}") from exc
    return parse_prd(content)


__all__ = [
    "PRDParseError",
    "load_prd",
    "parse_criteria",
    "parse_frontmatter",
    "parse_prd",
    "split_frontmatter",
]
