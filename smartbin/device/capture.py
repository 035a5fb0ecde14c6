from __future__ import annotations

import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from ..errors import Cancelled, PermissionDenied


@dataclass(frozen=True)
class ImageHandle:
    """Local image file handed from acquisition to classification."""

    path: Path
    mime_type: str = "image/jpeg"

    @property
    def filename(self) -> str:
        return self.path.name or "image.jpg"

    @classmethod
    def from_path(cls, path: Path | str) -> "ImageHandle":
        resolved = Path(path)
        guessed, _ = mimetypes.guess_type(resolved.name)
        return cls(path=resolved, mime_type=guessed or "image/jpeg")


class ImageSource(Protocol):
    def acquire(self) -> ImageHandle: ...


def _always_granted() -> bool:
    return True


class FileImageSource:
    """Hand over an image that already exists on disk (uploads, CLI)."""

    def __init__(self, path: Path | str, mime_type: str | None = None) -> None:
        self._path = Path(path)
        self._mime_type = mime_type

    def acquire(self) -> ImageHandle:
        if not self._path.is_file():
            raise FileNotFoundError(f"Image file not found: {self._path}")
        handle = ImageHandle.from_path(self._path)
        if self._mime_type:
            handle = ImageHandle(path=handle.path, mime_type=self._mime_type)
        return handle


class LibraryImageSource:
    """Select an existing photo through a picker callback.

    The picker returns ``None`` when the user backs out of the dialog.
    """

    def __init__(
        self,
        picker: Callable[[], Path | str | None],
        permission: Callable[[], bool] = _always_granted,
    ) -> None:
        self._picker = picker
        self._permission = permission

    def acquire(self) -> ImageHandle:
        if not self._permission():
            raise PermissionDenied("Photo library access was not granted")
        selected = self._picker()
        if selected is None:
            raise Cancelled("No image was selected")
        return FileImageSource(selected).acquire()


class CameraImageSource:
    """Capture a single frame from an OpenCV-compatible camera."""

    def __init__(
        self,
        output_dir: Path,
        source: int | str = 0,
        *,
        permission: Callable[[], bool] = _always_granted,
        encoding: str = "jpeg",
        warmup_frames: int = 2,
    ) -> None:
        self._output_dir = output_dir
        self._source = source
        self._permission = permission
        self._encoding = encoding.lstrip(".") or "jpeg"
        self._warmup_frames = warmup_frames

    def acquire(self) -> ImageHandle:
        if not self._permission():
            raise PermissionDenied("Camera access was not granted")
        try:
            import cv2  # type: ignore
        except ImportError as exc:  # pragma: no cover - depends on optional dep
            raise RuntimeError("opencv-python is required for CameraImageSource") from exc

        cap = cv2.VideoCapture(self._source)
        try:
            if not cap.isOpened():
                raise RuntimeError(f"Unable to open camera source {self._source!r}")
            for _ in range(max(0, self._warmup_frames)):
                ok, _ = cap.read()
                if not ok:
                    break
            ok, frame = cap.read()
            if not ok or frame is None:
                raise RuntimeError("Failed to capture frame from camera")
            success, buffer = cv2.imencode(f".{self._encoding}", frame)
            if not success:
                raise RuntimeError(f"OpenCV failed to encode frame as {self._encoding}")
        finally:
            cap.release()

        self._output_dir.mkdir(parents=True, exist_ok=True)
        path = self._output_dir / f"capture_{uuid.uuid4().hex[:12]}.{self._encoding}"
        path.write_bytes(buffer.tobytes())
        return ImageHandle(path=path, mime_type=f"image/{self._encoding}")


__all__ = [
    "ImageHandle",
    "ImageSource",
    "FileImageSource",
    "LibraryImageSource",
    "CameraImageSource",
]
