"""
Classification Prompt

System and user messages for classifying one event from its screenshot,
activity context and OCR text. The model must answer with a single JSON
object matching CLASSIFICATION_SCHEMA_DESCRIPTION.
"""

import base64
from pathlib import Path
from typing import Any

from screencap.capture.context import Evidence

MAX_OCR_CHARS = 6000
MAX_CONTEXT_FIELD_CHARS = 300

CLASSIFICATION_SCHEMA_DESCRIPTION = """
{
  "category": "Study" | "Work" | "Leisure" | "Chores" | "Social" | "Unknown",
  "subcategories": ["short", "labels"],
  "caption": "3-8 word description of the specific activity",
  "tags": ["keywords"],
  "confidence": 0.0-1.0,
  "project": "one of the user's projects, or null",
  "project_progress": {"shown": true|false, "confidence": 0.0-1.0},
  "addiction": {
    "name": "one of the tracked addictions, or null",
    "confidence": 0.0-1.0,
    "prompt": "short yes/no question for the user when unsure, or null"
  }
}
"""

CLASSIFICATION_SYSTEM_PROMPT = f"""You classify what a person is doing on their computer from a screenshot.

Return ONLY valid JSON matching this schema:
{CLASSIFICATION_SCHEMA_DESCRIPTION}
Rules:
- "caption" is precise: "Reading HN thread on Rust async", not "Browsing website".
  Use the app, window and content titles from the context when they help.
- "confidence" reflects how sure you are about "category" and "caption".
- "project" must be exactly one of the listed projects, or null.
- "project_progress.shown" is true only when the screen shows something a
  stakeholder could see (the project's running UI, a design, a staging page).
  Code editors, terminals, logs and diffs are NOT progress.
- If "project" is null, "project_progress" must be {{"shown": false, "confidence": 0}}.
- "addiction.name" must be one of the tracked addictions, or null. Be strict:
  only name one when concrete visual signals support it. Screens that review
  or configure addiction tracking never count.
- If no addictions are tracked, "addiction" must be {{"name": null, "confidence": 0, "prompt": null}}.

Categories:
- Study: learning, courses, educational reading, research
- Work: professional tasks, coding, email, documents, meetings
- Leisure: entertainment, games, social feeds, videos
- Chores: personal admin, bills, shopping, scheduling
- Social: messaging, calls, communication
- Unknown: cannot determine"""

_MIME_TYPES = {".webp": "image/webp", ".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}


def _compact(value: Any, max_chars: int = MAX_CONTEXT_FIELD_CHARS) -> str | None:
    if value is None:
        return None
    text = " ".join(str(value).split())
    if not text:
        return None
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1] + "…"


def format_context(evidence: Evidence) -> str | None:
    """Human-readable context block, or None when nothing is known."""
    context = evidence.context or {}
    content = context.get("content") or {}
    url = context.get("url") or {}

    lines = []
    for label, value in (
        ("App", evidence.app_name),
        ("App bundle", context.get("app_bundle_id")),
        ("Window", evidence.window_title),
        ("URL", evidence.url or url.get("url_canonical")),
        ("Page title", url.get("title")),
        ("Content type", (content.get("kind") or "").replace("_", " ") or None),
        ("Content title", evidence.content_title or content.get("title")),
    ):
        text = _compact(value)
        if text:
            lines.append(f"{label}: {text}")

    return "\n".join(lines) if lines else None


def build_classification_user_prompt(
    evidence: Evidence,
    projects: list[str] | None = None,
    tracked_addictions: list[str] | None = None,
    selected_project: str | None = None,
) -> str:
    """Text part of the user message."""
    sections = []

    context = format_context(evidence)
    sections.append(f"CURRENT CONTEXT:\n{context}" if context else "CURRENT CONTEXT: unknown")

    if selected_project:
        sections.append(f"SELECTED PROJECT (use exactly this value for \"project\"): {selected_project}")

    if projects:
        sections.append("USER'S PROJECTS:\n" + "\n".join(f"- {p}" for p in projects))
    else:
        sections.append("USER'S PROJECTS: none")

    if tracked_addictions:
        sections.append("TRACKED ADDICTIONS:\n" + "\n".join(f"- {a}" for a in tracked_addictions))
    else:
        sections.append("TRACKED ADDICTIONS: none")

    if evidence.ocr_text:
        text = evidence.ocr_text
        if len(text) > MAX_OCR_CHARS:
            text = text[:MAX_OCR_CHARS] + "\n[truncated]"
        sections.append(f"TEXT ON SCREEN (OCR):\n{text}")

    sections.append("Classify the screenshot.")
    return "\n\n".join(sections)


def encode_image(image_path: Path) -> str:
    """Data URL for an image file."""
    mime = _MIME_TYPES.get(image_path.suffix.lower(), "image/webp")
    data = base64.b64encode(image_path.read_bytes()).decode("utf-8")
    return f"data:{mime};base64,{data}"


def build_classification_messages(
    evidence: Evidence,
    projects: list[str] | None = None,
    tracked_addictions: list[str] | None = None,
    selected_project: str | None = None,
    image_detail: str = "low",
) -> list[dict[str, Any]]:
    """Chat messages for one classification call."""
    user_content: list[dict[str, Any]] = [
        {
            "type": "text",
            "text": build_classification_user_prompt(
                evidence, projects, tracked_addictions, selected_project
            ),
        }
    ]

    if evidence.image_path is not None and evidence.image_path.exists():
        user_content.append(
            {
                "type": "image_url",
                "image_url": {"url": encode_image(evidence.image_path), "detail": image_detail},
            }
        )

    return [
        {"role": "system", "content": CLASSIFICATION_SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]
