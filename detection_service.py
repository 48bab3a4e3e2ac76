"""
Detection Service clients for the AI content detector.

The orchestrator only ever sees the DetectionService interface: one
coroutine for text and one for images, both resolving to a boolean verdict
(True = AI-generated) or raising DetectionServiceError.
"""

from __future__ import annotations

import asyncio
import logging
import os
from io import BytesIO
from typing import Any, Optional

import httpx
from httpx import ConnectError, HTTPError, TimeoutException
from PIL import Image

logger = logging.getLogger(__name__)

DETECTION_TEXT_URL_ENV = "DETECTION_TEXT_URL"
DETECTION_IMAGE_URL_ENV = "DETECTION_IMAGE_URL"
DETECTION_API_KEY_ENV = "DETECTION_API_KEY"
DETECTION_TIMEOUT_ENV = "DETECTION_TIMEOUT"
DEFAULT_TIMEOUT_SECONDS = 120

# MIME type -> short name accepted by the detection endpoints
SUPPORTED_IMAGE_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/webp": "webp",
}

_MIME_ALIASES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "webp": "image/webp",
}


class DetectionServiceError(Exception):
    """Raised when the detection service cannot produce a verdict."""

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def normalize_mime_type(mime_type: str | None) -> str:
    """Return the canonical MIME type for a supported image, or raise DetectionServiceError."""
    mime = (mime_type or "").split(";")[0].strip().lower()
    mime = _MIME_ALIASES.get(mime, mime)
    if mime not in SUPPORTED_IMAGE_TYPES:
        raise DetectionServiceError(
            f"Unsupported image type '{mime_type}'. Supported types: PNG, JPEG, WEBP."
        )
    return mime


def sniff_image_type(data: bytes) -> Optional[str]:
    """Detect the MIME type of image bytes with Pillow; None when unreadable."""
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = (img.format or "").lower()
    except (OSError, Image.DecompressionBombError):
        return None
    return _MIME_ALIASES.get(fmt)


class DetectionService:
    """Interface for anything able to classify text and images as AI-generated."""

    async def detect_text(self, text: str) -> bool:
        raise NotImplementedError

    async def detect_image(self, data: bytes, mime_type: str, filename: str = "image") -> bool:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


def _verdict_from_response(result: Any, context: str) -> bool:
    """Read a verdict from the shapes detection endpoints return."""
    if not isinstance(result, dict):
        raise DetectionServiceError(f"{context} returned an unexpected response.")

    if "error" in result and result["error"]:
        error = result["error"]
        if isinstance(error, dict):
            error = error.get("message") or str(error)
        raise DetectionServiceError(f"{context} failed: {error}")

    if isinstance(result.get("is_ai"), bool):
        return result["is_ai"]

    label = result.get("label")
    if isinstance(label, str):
        normalized = label.strip().lower()
        if normalized in {"ai", "ai-generated", "fake", "generated", "machine"}:
            return True
        if normalized in {"human", "real", "human-written", "authentic"}:
            return False

    probability = result.get("probability", result.get("ai_probability"))
    if isinstance(probability, (int, float)) and not isinstance(probability, bool):
        return float(probability) >= 0.5

    raise DetectionServiceError(f"{context} returned no verdict.")


class HttpDetectionService(DetectionService):
    """Detection service backed by remote HTTP endpoints."""

    def __init__(
        self,
        text_url: str,
        image_url: str,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        self.text_url = text_url
        self.image_url = image_url
        self.api_key = (api_key or "").strip()
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            timeout=httpx.Timeout(timeout),
        )

        if self.api_key:
            logger.info("Detection service initialized with API key")
        else:
            logger.warning(f"{DETECTION_API_KEY_ENV} not set - service may require authentication")

    @classmethod
    def from_env(cls) -> "HttpDetectionService":
        validate_environment()
        timeout = os.getenv(DETECTION_TIMEOUT_ENV, "").strip()
        return cls(
            text_url=os.getenv(DETECTION_TEXT_URL_ENV, "").strip(),
            image_url=os.getenv(DETECTION_IMAGE_URL_ENV, "").strip(),
            api_key=os.getenv(DETECTION_API_KEY_ENV, ""),
            timeout=float(timeout) if timeout else DEFAULT_TIMEOUT_SECONDS,
        )

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "User-Agent": "AIDetector-Client/1.0",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _error_for_status(response: httpx.Response, context: str) -> DetectionServiceError:
        status = response.status_code
        if status == 401 or status == 403:
            message = "Authentication failed. Check DETECTION_API_KEY."
        elif status == 402:
            message = "Quota exceeded for the detection service."
        elif status == 413:
            message = "Payload too large for the detection service."
        elif status == 429:
            message = "Rate limit exceeded. Please try again later."
        elif status >= 500:
            message = f"{context} temporarily unavailable (status {status})."
        else:
            message = f"{context} failed (status {status})."

        # Prefer the service's own message when it sent one
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            if isinstance(error, dict):
                error = error.get("message") or str(error)
            message = str(error)
        return DetectionServiceError(message, status_code=status)

    async def _post(
        self,
        url: str,
        *,
        data: dict | None = None,
        files: dict | None = None,
        context: str,
    ) -> bool:
        try:
            resp = await self.client.post(
                url,
                data=data,
                files=files,
                headers=self._get_headers(),
                timeout=self.timeout,
            )
        except TimeoutException as e:
            logger.error(f"{context} timed out: {e}")
            raise DetectionServiceError(f"{context} timed out.") from e
        except ConnectError as e:
            logger.error(f"{context} connection error: {e}")
            raise DetectionServiceError(f"{context} is unreachable.") from e
        except HTTPError as e:
            logger.error(f"{context} request error: {e}")
            raise DetectionServiceError(f"{context} request failed: {e}") from e

        if resp.status_code >= 400:
            error = self._error_for_status(resp, context)
            logger.warning(f"{context} returned {resp.status_code}: {error.message}")
            raise error

        try:
            result = resp.json()
        except ValueError as e:
            raise DetectionServiceError(
                f"{context} returned invalid JSON (status {resp.status_code}). Response: {resp.text[:200]}"
            ) from e

        return _verdict_from_response(result, context)

    async def detect_text(self, text: str) -> bool:
        return await self._post(self.text_url, data={"text": text}, context="Text detection")

    async def detect_image(self, data: bytes, mime_type: str, filename: str = "image") -> bool:
        mime = normalize_mime_type(mime_type)
        files = {"image": (filename, data, mime)}
        return await self._post(
            self.image_url,
            data={"format": SUPPORTED_IMAGE_TYPES[mime]},
            files=files,
            context="Image detection",
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class DemoDetectionService(DetectionService):
    """Offline stand-in used for demos. Keyword and metadata heuristics, not real detection."""

    AI_INDICATORS = [
        "as an ai", "language model", "in conclusion", "furthermore", "moreover",
        "it is important to note", "delve", "tapestry", "in today's fast-paced world",
        "additionally", "overall", "comprehensive", "leverage", "seamless",
    ]
    HUMAN_INDICATORS = [
        "i think", "in my opinion", "personally", "idk", "lol", "tbh",
        "you know", "i mean", "kind of", "sort of", "gonna", "wanna",
    ]
    GENERATOR_MARKERS = ["stable diffusion", "midjourney", "dall-e", "dall·e", "comfyui", "novelai", "firefly"]

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    async def detect_text(self, text: str) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        text_lower = text.lower()
        ai_score = sum(1 for indicator in self.AI_INDICATORS if indicator in text_lower)
        human_score = sum(1 for indicator in self.HUMAN_INDICATORS if indicator in text_lower)
        return ai_score > human_score

    async def detect_image(self, data: bytes, mime_type: str, filename: str = "image") -> bool:
        normalize_mime_type(mime_type)
        if self.delay:
            await asyncio.sleep(self.delay)
        try:
            with Image.open(BytesIO(data)) as img:
                metadata = " ".join(str(v) for v in img.info.values()).lower()
                keys = {str(k).lower() for k in img.info}
        except (OSError, Image.DecompressionBombError) as e:
            raise DetectionServiceError(f"Could not read image: {e}") from e
        if "parameters" in keys or "prompt" in keys:
            return True
        return any(marker in metadata for marker in self.GENERATOR_MARKERS)


def validate_environment() -> None:
    """Raise RuntimeError listing every missing required environment variable."""
    missing_vars = []

    if not os.getenv(DETECTION_TEXT_URL_ENV, "").strip():
        missing_vars.append(f"{DETECTION_TEXT_URL_ENV} (text detection endpoint)")

    if not os.getenv(DETECTION_IMAGE_URL_ENV, "").strip():
        missing_vars.append(f"{DETECTION_IMAGE_URL_ENV} (image detection endpoint)")

    if missing_vars:
        error_msg = f"Missing required environment variables: {', '.join(missing_vars)}"
        logger.error(error_msg)
        raise RuntimeError(error_msg)
