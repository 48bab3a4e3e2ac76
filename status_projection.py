"""
Result/Status projection: derives what the presentation layer shows from the
current analysis status. Pure functions, no state of their own.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from mode_state import AnalysisStatus, Error, Loading, Mode, Result

RESULT_CAPTION = "AI-generated content:"
AI_TITLE = "YES"
AI_TEXT = "This content appears to be AI-generated."
HUMAN_TITLE = "NO"
HUMAN_TEXT = "This content appears to be human-made."
LOADING_LABEL = "Analyzing..."
UPLOAD_HINT = "PNG, JPG, WEBP (MAX. 4MB)"


class ViewKind(enum.Enum):
    NOTHING = "nothing"
    LOADING = "loading"
    VERDICT = "verdict"
    ERROR = "error"


@dataclass(frozen=True)
class StatusView:
    kind: ViewKind
    verdict: Optional[bool] = None
    caption: str = ""
    title: str = ""
    text: str = ""
    error: str = ""


@dataclass(frozen=True)
class ButtonView:
    label: str
    enabled: bool


def project_status(status: AnalysisStatus) -> StatusView:
    """Map an analysis status onto exactly one kind of view."""
    if isinstance(status, Loading):
        return StatusView(kind=ViewKind.LOADING)
    if isinstance(status, Result):
        return StatusView(
            kind=ViewKind.VERDICT,
            verdict=status.verdict,
            caption=RESULT_CAPTION,
            title=AI_TITLE if status.verdict else HUMAN_TITLE,
            text=AI_TEXT if status.verdict else HUMAN_TEXT,
        )
    if isinstance(status, Error):
        return StatusView(kind=ViewKind.ERROR, error=status.message)
    return StatusView(kind=ViewKind.NOTHING)


def analyze_button(mode: Mode, status: AnalysisStatus) -> ButtonView:
    if isinstance(status, Loading):
        return ButtonView(label=LOADING_LABEL, enabled=False)
    target = "Text" if mode is Mode.TEXT else "Image"
    return ButtonView(label=f"Analyze {target}", enabled=True)


def render_text(view: StatusView) -> str:
    """Plain-text rendering used by the terminal shell."""
    if view.kind is ViewKind.LOADING:
        return LOADING_LABEL
    if view.kind is ViewKind.VERDICT:
        return f"{view.caption} {view.title}\n{view.text}"
    if view.kind is ViewKind.ERROR:
        return f"Error: {view.error}"
    return ""
