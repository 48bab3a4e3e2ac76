"""
Analysis Orchestrator for the AI content detector.

State machine: Idle -> Loading -> Result | Error. Idle is re-entered only
through a reset in ModeState (mode switch, text edit, new file, dispose).

At most one detection request is outstanding at a time. Every failure,
local or remote, ends here as an Error status and is never re-raised.
"""

from __future__ import annotations

import logging
from typing import Optional

from detection_service import DetectionService
from input_validation import NO_IMAGE_REASON, NO_TEXT_REASON, Invalid, validate
from mode_state import (
    LOADING,
    Error,
    ImageInput,
    Loading,
    Mode,
    ModeState,
    Result,
    TextInput,
)

logger = logging.getLogger(__name__)

FALLBACK_ERROR_MESSAGE = "an unexpected error occurred"


class ValidationError(Exception):
    """Input rejected locally, before the detection service is contacted."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def error_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None)
    if not isinstance(message, str) or not message.strip():
        message = str(exc)
    return message.strip() or FALLBACK_ERROR_MESSAGE


class AnalysisOrchestrator:
    """Coordinates validation, single-flight dispatch and outcome handling for one session."""

    def __init__(self, state: ModeState, service: DetectionService, discard_stale: bool = True):
        self.state = state
        self.service = service
        # When False, a late completion overwrites whatever status exists when it lands
        self.discard_stale = discard_stale
        self._in_flight = False
        self.dispatch_count = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _check_input(self) -> None:
        result = validate(self.state.mode, self.state.working_input)
        if isinstance(result, Invalid):
            raise ValidationError(result.reason)

    async def _dispatch(self, mode: Mode, working_input) -> bool:
        if mode is Mode.TEXT:
            if not isinstance(working_input, TextInput):
                raise ValidationError(NO_TEXT_REASON)
            return await self.service.detect_text(working_input.text)

        if not isinstance(working_input, ImageInput) or working_input.image is None:
            raise ValidationError(NO_IMAGE_REASON)
        image = working_input.image
        return await self.service.detect_image(image.data, image.mime_type, filename=image.filename)

    def _apply(self, status, generation: int) -> bool:
        if self.discard_stale and generation != self.state.generation:
            logger.info(f"Discarding stale completion ({status!r}) from generation {generation}")
            return False
        self.state.set_status(status)
        return True

    async def analyze(self) -> Optional[bool]:
        """
        Run one analysis for the current mode and input.

        Returns the verdict when a result was applied, otherwise None (ignored
        re-entrant call, validation failure, service failure or stale result).
        The outcome is always visible through ``state.status``.
        """
        if self._in_flight or isinstance(self.state.status, Loading):
            logger.debug("analyze ignored: a request is already in flight")
            return None

        if self.state.disposed:
            logger.warning("analyze ignored: session has been disposed")
            return None

        try:
            self._check_input()
        except ValidationError as e:
            logger.info(f"Validation failed: {e.reason}")
            self.state.set_status(Error(e.reason))
            return None

        mode = self.state.mode
        working_input = self.state.working_input
        generation = self.state.generation

        self._in_flight = True
        self.dispatch_count += 1
        try:
            self.state.set_status(LOADING)
            logger.info(f"Dispatching {mode.value} analysis (generation {generation})")
            try:
                verdict = await self._dispatch(mode, working_input)
            except Exception as e:
                logger.warning(f"Detection failed: {e!r}")
                self._apply(Error(error_message(e)), generation)
                return None
        finally:
            self._in_flight = False

        if not isinstance(verdict, bool):
            logger.error(f"Detection service returned a non-boolean verdict: {verdict!r}")
            self._apply(Error(FALLBACK_ERROR_MESSAGE), generation)
            return None

        logger.info(f"Analysis complete: {'AI-generated' if verdict else 'human-origin'}")
        if self._apply(Result(verdict), generation):
            return verdict
        return None

    def dispose(self) -> None:
        """Tear the session down; any live preview is released."""
        self.state.dispose()
