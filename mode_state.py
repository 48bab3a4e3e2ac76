"""
Mode State for the AI content detector.

Holds the active analysis mode (text or image), the working input for that
mode and the current analysis status. Every mutation goes through the
methods below, and listeners registered with ``subscribe`` are told about it
so a presentation layer can re-render without polling.
"""

from __future__ import annotations

import enum
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from preview_resources import PreviewHandle, PreviewManager

logger = logging.getLogger(__name__)


class Mode(enum.Enum):
    TEXT = "text"
    IMAGE = "image"


@dataclass(frozen=True)
class SelectedImage:
    """Raw image file picked by the user."""
    filename: str
    data: bytes
    mime_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path: str | Path) -> "SelectedImage":
        path = Path(path)
        mime, _ = mimetypes.guess_type(path.name)
        return cls(filename=path.name, data=path.read_bytes(), mime_type=mime or "application/octet-stream")

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class TextInput:
    text: str = ""


@dataclass(frozen=True)
class ImageInput:
    image: Optional[SelectedImage] = None
    preview: Optional[PreviewHandle] = None


WorkingInput = Union[TextInput, ImageInput]


# Analysis status variants
@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Loading:
    pass


@dataclass(frozen=True)
class Result:
    verdict: bool


@dataclass(frozen=True)
class Error:
    message: str


AnalysisStatus = Union[Idle, Loading, Result, Error]

IDLE = Idle()
LOADING = Loading()

Listener = Callable[["ModeState"], None]


def empty_input(mode: Mode) -> WorkingInput:
    return TextInput() if mode is Mode.TEXT else ImageInput()


class ModeState:
    """Plain state container for one detector session."""

    def __init__(self, mode: Mode = Mode.TEXT, preview_manager: PreviewManager | None = None):
        self.mode = mode
        self.working_input: WorkingInput = empty_input(mode)
        self.status: AnalysisStatus = IDLE
        # Bumped on every reset so late completions can be recognised
        self.generation = 0
        self.disposed = False
        self.previews = preview_manager or PreviewManager()
        self._listeners: list[Listener] = []

    @property
    def preview(self) -> Optional[PreviewHandle]:
        if isinstance(self.working_input, ImageInput):
            return self.working_input.preview
        return None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception(f"State listener {listener!r} failed")

    def _reset_status(self) -> None:
        self.status = IDLE
        self.generation += 1

    def set_status(self, status: AnalysisStatus) -> None:
        self.status = status
        self._notify()

    def set_mode(self, new_mode: Mode) -> None:
        if new_mode is self.mode:
            return

        self.previews.release_current()
        self.working_input = empty_input(new_mode)
        self._reset_status()
        logger.info(f"Mode switched: {self.mode.value} -> {new_mode.value}")
        self.mode = new_mode
        self._notify()

    def update_text(self, text: str) -> None:
        if self.mode is not Mode.TEXT:
            logger.warning("update_text ignored: text input is only accepted in text mode")
            return

        self.working_input = TextInput(text)
        self._reset_status()
        self._notify()

    def select_file(self, image: SelectedImage) -> PreviewHandle | None:
        if self.mode is not Mode.IMAGE:
            logger.warning("select_file ignored: files are only accepted in image mode")
            return None

        handle = self.previews.set_selection(image)
        self.working_input = ImageInput(image=image, preview=handle)
        self._reset_status()
        logger.info(f"Image selected: {image.filename} ({image.size:,} bytes)")
        self._notify()
        return handle

    def dispose(self) -> None:
        """Release the preview and clear the session. Safe to call more than once."""
        if self.disposed:
            return

        self.previews.close()
        self.working_input = empty_input(self.mode)
        self._reset_status()
        self.disposed = True
        self._notify()
        self._listeners.clear()
