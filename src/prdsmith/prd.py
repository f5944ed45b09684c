"""PRD slugs, markdown/JSON rendering and output files."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import PRDDraft
from .templates import render_template

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 100
SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
# Names Windows refuses as file names, with or without an extension
RESERVED_SLUGS = frozenset(
    ["con", "prn", "aux", "nul"]
    + [f"com{i}" for i in range(1, 10)]
    + [f"lpt{i}" for i in range(1, 10)]
)
PRD_JSON_VERSION = 1
GENERATOR = "prdsmith"


class PRDValidationError(ValueError):
    pass


def validate_slug(slug: str) -> List[str]:
    """Return the problems with ``slug``; an empty list means it is usable."""
    problems = []
    if not slug:
        return ["slug is empty"]
    if len(slug) > SLUG_MAX_LENGTH:
        problems.append(f"slug is longer than {SLUG_MAX_LENGTH} characters")
    if not SLUG_PATTERN.match(slug):
        problems.append("slug may only contain lowercase letters, digits and single hyphens")
    if slug in RESERVED_SLUGS:
        problems.append(f"{slug!r} is a reserved file name")
    return problems


def normalize_slug(text: str) -> str:
    """Turn arbitrary text into a valid slug ("" when nothing is left)."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    slug = slug[:SLUG_MAX_LENGTH].rstrip("-")
    if slug in RESERVED_SLUGS:
        slug = f"{slug}-prd"
    return slug


def title_from_slug(slug: str) -> str:
    return " ".join(part.capitalize() for part in slug.split("-")) or "Untitled"


def story_id(index: int) -> str:
    return f"US-{index:03d}"


def render_markdown(
    prd: PRDDraft,
    slug: str,
    *,
    title: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    return render_template(
        "prd.md",
        prd=prd,
        title=title or title_from_slug(slug),
        generated_at=generated_at,
        story_id=story_id,
    )


def generate_json(
    prd: PRDDraft,
    slug: str,
    *,
    title: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build the machine-readable PRD document.

    Stories and criteria get stable ids and a ``completed`` flag so that
    downstream tooling can tick them off.
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    stories = []
    for idx, story in enumerate(prd.user_stories, 1):
        sid = story_id(idx)
        stories.append(
            {
                "id": sid,
                "title": story.title,
                "description": story.description,
                "acceptanceCriteria": [
                    {"id": f"{sid}-AC-{n:02d}", "description": text, "completed": False}
                    for n, text in enumerate(story.acceptance_criteria, 1)
                ],
                "completed": False,
            }
        )
    return {
        "version": PRD_JSON_VERSION,
        "metadata": {
            "slug": slug,
            "title": title or title_from_slug(slug),
            "generatedAt": generated_at.isoformat(),
            "generator": GENERATOR,
        },
        "overview": prd.overview,
        "userStories": stories,
        "technicalNotes": prd.technical_notes,
    }


@dataclass
class PRDFiles:
    markdown_path: Path
    json_path: Path


def write_prd(
    prd: PRDDraft,
    slug: str,
    output_dir: Path | str,
    *,
    title: Optional[str] = None,
) -> PRDFiles:
    """Write ``<slug>.md`` and ``<slug>.json`` into ``output_dir``.

    Raises:
        PRDValidationError: if ``slug`` is not a valid slug.
    """
    problems = validate_slug(slug)
    if problems:
        raise PRDValidationError("; ".join(problems))

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    generated_at = datetime.now(timezone.utc)

    files = PRDFiles(
        markdown_path=output_dir / f"{slug}.md",
        json_path=output_dir / f"{slug}.json",
    )
    files.markdown_path.write_text(
        render_markdown(prd, slug, title=title, generated_at=generated_at), encoding="utf-8"
    )
    document = generate_json(prd, slug, title=title, generated_at=generated_at)
    files.json_path.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
    logger.info("Wrote PRD to %s and %s", files.markdown_path, files.json_path)
    return files
