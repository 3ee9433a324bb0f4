"""Image-to-text extraction with Tesseract.

Recognition runs locally, never through the API server. Each call is a
job: it owns its engine and image for its whole lifetime and releases both
when it ends, whichever way it ends.
"""

import asyncio
import io
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Union

import pytesseract
from PIL import Image, ImageSequence, UnidentifiedImageError
from pytesseract import TesseractError, TesseractNotFoundError

from .config import ClientSettings
from .errors import OcrCancelled, OcrFailure, ValidationFailure

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".tiff", ".tif"}

OCR_LANGUAGES = {
    "eng": "English",
    "vie": "Vietnamese",
    "chi_sim": "Chinese (Simplified)",
    "chi_tra": "Chinese (Traditional)",
    "jpn": "Japanese",
    "kor": "Korean",
    "fra": "French",
    "deu": "German",
    "spa": "Spanish",
    "por": "Portuguese",
    "ita": "Italian",
    "rus": "Russian",
    "tha": "Thai",
    "ara": "Arabic",
}

NOT_AN_IMAGE = "Please select an image file (PNG, JPG, etc.)"
TESSERACT_MISSING = "Tesseract is not installed or not on PATH (set PROMPTLIB_TESSERACT_CMD)"

ImageSource = Union[str, Path, bytes]
ProgressCallback = Callable[[float], None]


class OcrStatus(str, Enum):
    TEXT_FOUND = "text_found"
    NO_TEXT = "no_text"


@dataclass
class OcrResult:
    """Outcome of one recognition. An empty image is a result, not an error."""

    text: str
    language: str
    status: OcrStatus

    @property
    def found(self) -> bool:
        return self.status is OcrStatus.TEXT_FOUND


class CancelToken:
    """Cancellation flag shared between the caller and the worker thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OcrCancelled()


class RecognitionEngine(ABC):
    """A text recognizer. Used by exactly one job: load, recognize, terminate."""

    @abstractmethod
    def load(self, language: str) -> None:
        """Prepare the engine for a language (e.g. "eng" or "eng+vie")."""
        pass

    @abstractmethod
    def recognize(self, image: Image.Image, on_progress: ProgressCallback, token: CancelToken) -> str:
        """Return the recognized text, reporting progress as a fraction 0.0-1.0.

        Implementations check the token between steps.
        """
        pass

    @abstractmethod
    def terminate(self) -> None:
        """Release everything load() acquired. Safe to call after a failed load."""
        pass


class TesseractEngine(RecognitionEngine):
    """Tesseract through pytesseract. Multi-frame images are read frame by frame."""

    def __init__(self, tesseract_cmd: Optional[str] = None, timeout: float = 0):
        self.tesseract_cmd = tesseract_cmd
        self.timeout = timeout
        self.language: Optional[str] = None

    def load(self, language: str) -> None:
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

        try:
            installed = set(pytesseract.get_languages(config=""))
        except TesseractNotFoundError as e:
            raise OcrFailure(TESSERACT_MISSING) from e
        except TesseractError as e:
            raise OcrFailure(f"Tesseract failed: {e.message}") from e

        missing = [code for code in language.split("+") if code not in installed]
        if missing:
            raise ValidationFailure(f"Tesseract language data not installed: {', '.join(missing)}")
        self.language = language

    def recognize(self, image: Image.Image, on_progress: ProgressCallback, token: CancelToken) -> str:
        if self.language is None:
            raise RuntimeError("TesseractEngine.recognize() called before load()")

        total = getattr(image, "n_frames", 1) or 1
        parts: list[str] = []
        for index, frame in enumerate(ImageSequence.Iterator(image)):
            token.raise_if_cancelled()
            try:
                text = pytesseract.image_to_string(
                    frame.convert("RGB"),
                    lang=self.language,
                    timeout=self.timeout,
                )
            except TesseractNotFoundError as e:
                raise OcrFailure(TESSERACT_MISSING) from e
            except TesseractError as e:
                raise OcrFailure(f"Tesseract failed: {e.message}") from e
            except RuntimeError as e:
                # pytesseract reports a timeout as a bare RuntimeError
                raise OcrFailure(f"Tesseract failed: {e}") from e
            parts.append(text.strip())
            on_progress((index + 1) / total)
        return "\n\n".join(part for part in parts if part)

    def terminate(self) -> None:
        self.language = None


def validate_language(language: str) -> str:
    codes = language.split("+") if language else []
    if not codes or any(code not in OCR_LANGUAGES for code in codes):
        raise ValidationFailure(f"Unsupported OCR language: {language!r}")
    return language


def open_image(source: ImageSource, content_type: Optional[str] = None) -> Image.Image:
    """Open an image for recognition.

    Raises:
        ValidationFailure: If the input is not an image Pillow can read.
    """
    if content_type is not None and not content_type.lower().startswith("image/"):
        raise ValidationFailure(NOT_AN_IMAGE)

    if isinstance(source, (str, Path)):
        path = Path(source)
        if path.suffix.lower() not in IMAGE_EXTENSIONS:
            raise ValidationFailure(NOT_AN_IMAGE)
        if not path.is_file():
            raise ValidationFailure(f"Image not found: {path}")
        fp = path
    else:
        fp = io.BytesIO(source)

    try:
        return Image.open(fp)
    except UnidentifiedImageError as e:
        raise ValidationFailure(NOT_AN_IMAGE) from e


class OcrJob:
    """Handle for one running recognition.

    progress() yields whole percentages, starting at 0 and never going down;
    it ends when the job ends. cancel() stops the job at the next step and
    makes result() raise OcrCancelled. Must be created inside a running loop.
    """

    def __init__(self, engine: RecognitionEngine, image: Image.Image, language: str):
        self.language = language
        self.token = CancelToken()
        self._engine = engine
        self._image = image
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[Optional[int]] = asyncio.Queue()
        self._last = 0
        self._queue.put_nowait(0)
        self._task = asyncio.create_task(self._run())

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        self.token.cancel()

    async def result(self) -> OcrResult:
        return await self._task

    async def progress(self) -> AsyncIterator[int]:
        while True:
            value = await self._queue.get()
            if value is None:
                return
            yield value

    def _push(self, percent: int) -> None:
        if percent > self._last:
            self._last = percent
            self._queue.put_nowait(percent)

    def _report(self, fraction: float) -> None:
        """Progress callback for the engine; runs on the worker thread."""
        percent = max(0, min(100, int(fraction * 100)))
        self._loop.call_soon_threadsafe(self._push, percent)

    def _recognize(self) -> str:
        try:
            self.token.raise_if_cancelled()
            self._engine.load(self.language)
            return self._engine.recognize(self._image, self._report, self.token)
        finally:
            self._engine.terminate()
            self._image.close()

    async def _run(self) -> OcrResult:
        try:
            text = await asyncio.to_thread(self._recognize)
            # A cancel that arrives during the last step still wins
            self.token.raise_if_cancelled()

            text = (text or "").strip()
            self._push(100)
            status = OcrStatus.TEXT_FOUND if text else OcrStatus.NO_TEXT
            logger.info(f"[OCR] Finished ({self.language}): {len(text)} chars, {status.value}")
            return OcrResult(text=text, language=self.language, status=status)
        except OcrCancelled:
            logger.info("[OCR] Cancelled")
            raise
        except Exception as e:
            logger.error(f"[OCR] Recognition failed: {type(e).__name__}: {e}")
            raise
        finally:
            self._queue.put_nowait(None)


class OcrAdapter:
    """Validates input and starts recognition jobs."""

    def __init__(
        self,
        engine_factory: Optional[Callable[[], RecognitionEngine]] = None,
        default_language: str = "eng",
    ):
        self.engine_factory = engine_factory or TesseractEngine
        self.default_language = default_language

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "OcrAdapter":
        return cls(
            engine_factory=lambda: TesseractEngine(settings.tesseract_cmd, settings.ocr_timeout),
            default_language=settings.ocr_language,
        )

    def start(
        self,
        image: ImageSource,
        language: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> OcrJob:
        """Validate and start a job. Invalid input never reaches the engine.

        Raises:
            ValidationFailure: Not an image, unreadable, or unsupported language.
        """
        language = validate_language(language or self.default_language)
        opened = open_image(image, content_type)
        logger.debug(f"[OCR] Starting recognition ({language}, {opened.format}, {opened.size})")
        try:
            return OcrJob(self.engine_factory(), opened, language)
        except Exception:
            opened.close()
            raise

    async def extract(
        self,
        image: ImageSource,
        language: Optional[str] = None,
        content_type: Optional[str] = None,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> OcrResult:
        """Run one recognition to completion, optionally forwarding progress."""
        job = self.start(image, language, content_type)
        if on_progress is not None:
            async for percent in job.progress():
                on_progress(percent)
        return await job.result()
