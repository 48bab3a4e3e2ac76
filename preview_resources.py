"""
Preview Resource Manager for the AI content detector.
Owns the temporary preview files rendered for a selected image and makes
sure every one of them is released exactly once.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from PIL import Image

if TYPE_CHECKING:
    from mode_state import SelectedImage

logger = logging.getLogger(__name__)

PREVIEW_MAX_SIZE = (512, 512)


@dataclass(eq=False)
class PreviewHandle:
    """Revocable reference to a preview file on local disk."""
    path: Path
    source_name: str
    released: bool = field(default=False)

    @property
    def live(self) -> bool:
        return not self.released


class PreviewManager:
    """Creates preview handles for selected images and releases them on replacement."""

    def __init__(self, preview_dir: str | os.PathLike | None = None):
        self._preview_dir = Path(preview_dir) if preview_dir else None
        self._owns_dir = preview_dir is None
        self._live: set[PreviewHandle] = set()
        self.current: Optional[PreviewHandle] = None

    @property
    def live_handles(self) -> int:
        return len(self._live)

    def _get_dir(self) -> Path:
        if self._preview_dir is None:
            self._preview_dir = Path(tempfile.mkdtemp(prefix="detector-preview-"))
        self._preview_dir.mkdir(parents=True, exist_ok=True)
        return self._preview_dir

    def _render(self, image: SelectedImage, target_dir: Path) -> Path:
        """Write a PNG thumbnail, falling back to the raw bytes if Pillow cannot decode them."""
        try:
            with Image.open(BytesIO(image.data)) as img:
                img.thumbnail(PREVIEW_MAX_SIZE)
                if img.mode not in ("RGB", "RGBA", "L", "LA"):
                    img = img.convert("RGBA")
                path = target_dir / f"preview-{uuid.uuid4().hex}.png"
                img.save(path, format="PNG")
                return path
        except (OSError, Image.DecompressionBombError) as e:
            logger.warning(f"Could not render thumbnail for {image.filename}: {e}")

        suffix = Path(image.filename).suffix or ".bin"
        path = target_dir / f"preview-{uuid.uuid4().hex}{suffix}"
        path.write_bytes(image.data)
        return path

    def set_selection(self, image: SelectedImage) -> PreviewHandle:
        """Create the preview for a new selection and release the previous one."""
        previous = self.current
        handle = PreviewHandle(path=self._render(image, self._get_dir()), source_name=image.filename)
        self._live.add(handle)
        self.current = handle
        self.release(previous)
        logger.debug(f"Preview created for {image.filename}: {handle.path}")
        return handle

    def release(self, handle: Optional[PreviewHandle]) -> bool:
        """Revoke a handle. Returns False when there was nothing to release."""
        if handle is None or handle.released:
            return False

        handle.released = True
        self._live.discard(handle)
        if self.current is handle:
            self.current = None
        try:
            handle.path.unlink()
        except FileNotFoundError:
            pass
        logger.debug(f"Preview released: {handle.path}")
        return True

    def release_current(self) -> bool:
        return self.release(self.current)

    def close(self) -> None:
        """Release every live handle and remove the preview directory if we created it."""
        for handle in list(self._live):
            self.release(handle)
        if self._owns_dir and self._preview_dir is not None:
            shutil.rmtree(self._preview_dir, ignore_errors=True)
            self._preview_dir = None
