"""
Input validation for the AI content detector.
Pure checks run before anything is sent to the detection service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from mode_state import ImageInput, Mode, TextInput, WorkingInput

NO_TEXT_REASON = "no text provided"
NO_IMAGE_REASON = "no image provided"


@dataclass(frozen=True)
class Valid:
    """Input is ready to be dispatched."""


@dataclass(frozen=True)
class Invalid:
    reason: str


ValidationResult = Union[Valid, Invalid]


def validate(mode: Mode, working_input: WorkingInput | None) -> ValidationResult:
    """Return Valid() or Invalid(reason) for the input of the active mode."""
    if mode is Mode.TEXT:
        text = working_input.text if isinstance(working_input, TextInput) else ""
        if not text or not text.strip():
            return Invalid(NO_TEXT_REASON)
        return Valid()

    if not isinstance(working_input, ImageInput) or working_input.image is None:
        return Invalid(NO_IMAGE_REASON)
    return Valid()
