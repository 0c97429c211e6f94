import base64
import binascii
import io
import logging
import re
import threading
from pathlib import Path
from typing import Any

from PIL import Image

from .errors import CaptureError, ErrorKind
from .models import CapturedAsset

log = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)


def decode_data_url(value: Any, max_bytes: int = 0) -> bytes:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise CaptureError(ErrorKind.INVALID_REQUEST, "Missing imageData")
    if not isinstance(value, str):
        raise CaptureError(ErrorKind.INVALID_REQUEST, "imageData must be a base64 data URL string")
    if max_bytes > 0 and len(value) > max_bytes:
        raise CaptureError(
            ErrorKind.INVALID_REQUEST,
            f"imageData exceeds the {max_bytes} byte limit",
            status_code=413,
        )
    payload = _DATA_URL_RE.sub("", value.strip(), count=1)
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CaptureError(ErrorKind.INVALID_REQUEST, f"imageData is not valid base64: {exc}") from exc
    if not data:
        raise CaptureError(ErrorKind.INVALID_REQUEST, "imageData is empty")
    return data


def prepare_capture(data: bytes, max_side: int = 0) -> bytes:
    try:
        with Image.open(io.BytesIO(data)) as probe:
            probe.verify()
    except (OSError, SyntaxError, ValueError) as exc:
        raise CaptureError(ErrorKind.INVALID_REQUEST, f"imageData is not a readable image: {exc}") from exc

    if max_side <= 0:
        return data

    image = Image.open(io.BytesIO(data)).convert("RGB")
    w, h = image.size
    if max(w, h) <= max_side:
        return data
    scale = max_side / max(w, h)
    new_size = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
    image = image.resize(new_size, resample=Image.LANCZOS)
    buf = io.BytesIO()
    image.save(buf, format="JPEG", quality=92)
    return buf.getvalue()


class AssetSlot:
    """Generation-numbered capture files in the ComfyUI input directory.

    Every write gets a fresh name ``<stem>_<generation><suffix>`` so a queued
    job never reads a frame captured after it was submitted. Only the newest
    ``keep`` generations stay on disk.
    """

    def __init__(self, directory: Path, filename: str, keep: int = 4):
        self.directory = Path(directory)
        name = Path(filename)
        self.stem = name.stem
        self.suffix = name.suffix or ".jpg"
        self.keep = max(1, keep)
        self._lock = threading.Lock()
        self._generation = max(self._existing_generations(), default=0)

    @property
    def generation(self) -> int:
        return self._generation

    def filename_for(self, generation: int) -> str:
        return f"{self.stem}_{generation:06d}{self.suffix}"

    def _existing_generations(self):
        if not self.directory.is_dir():
            return []
        found = []
        for p in self.directory.glob(f"{self.stem}_*{self.suffix}"):
            tail = p.name[len(self.stem) + 1 : len(p.name) - len(self.suffix)]
            if tail.isdigit():
                found.append(int(tail))
        return found

    def _prune(self, current: int) -> None:
        for generation in self._existing_generations():
            if generation <= current - self.keep:
                stale = self.directory / self.filename_for(generation)
                try:
                    stale.unlink()
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    log.warning("Could not remove stale capture %s: %s", stale, exc)
                    continue
                log.debug("Removed stale capture %s", stale)

    def write(self, data: bytes) -> CapturedAsset:
        with self._lock:
            self._generation += 1
            generation = self._generation
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self.directory / self.filename_for(generation)
            path.write_bytes(data)
            self._prune(generation)
        log.info("Frame saved: %s (generation %d)", path, generation)
        return CapturedAsset(generation=generation, filename=path.name, path=str(path))
