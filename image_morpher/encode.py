from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import numpy as np

try:
    import cv2
except ImportError as exc:  # pragma: no cover
    raise RuntimeError("OpenCV required for encoding") from exc

from .image_buffer import ImageBuffer

logger = logging.getLogger(__name__)


def to_bgr(pixels: np.ndarray) -> np.ndarray:
    """Reduce a 1, 3 or 4 channel frame to 8-bit BGR for video writers."""
    if pixels.dtype == np.uint16:
        pixels = (pixels >> 8).astype(np.uint8)
    if pixels.ndim == 2 or pixels.shape[2] == 1:
        return cv2.cvtColor(np.ascontiguousarray(pixels), cv2.COLOR_GRAY2BGR)
    if pixels.shape[2] == 4:
        return cv2.cvtColor(np.ascontiguousarray(pixels), cv2.COLOR_BGRA2BGR)
    if pixels.shape[2] == 3:
        return np.ascontiguousarray(pixels)
    raise ValueError(f"Unsupported channel count: {pixels.shape[2]}")


class VideoEncoder:
    def __init__(
        self,
        output_path: Path,
        *,
        fps: float,
        frame_size: tuple[int, int],
    ) -> None:
        self.output_path = output_path
        self.fps = fps
        self.frame_size = frame_size
        self.frames_written = 0
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self._writer = self._create_writer(output_path)
        if self._writer is None:
            raise RuntimeError(
                "Failed to open VideoWriter. Ensure FFmpeg with MP4 support is installed or adjust output codec."
            )
        logger.info("VideoEncoder initialised: %s", output_path)

    def _create_writer(self, path: Path) -> Optional[cv2.VideoWriter]:
        fourcc_candidates = ["avc1", "H264", "mp4v", "XVID", "MJPG"]
        for code in fourcc_candidates:
            fourcc = cv2.VideoWriter_fourcc(*code)
            writer = cv2.VideoWriter(str(path), fourcc, self.fps, self.frame_size)
            if writer.isOpened():
                logger.info("Using VideoWriter fourcc=%s", code)
                return writer
            writer.release()
        return None

    def write(self, frame: ImageBuffer) -> None:
        frame_bgr = to_bgr(frame.pixels)
        if frame_bgr.shape[1] != self.frame_size[0] or frame_bgr.shape[0] != self.frame_size[1]:
            frame_bgr = cv2.resize(frame_bgr, self.frame_size, interpolation=cv2.INTER_LINEAR)
        self._writer.write(frame_bgr)
        self.frames_written += 1

    def close(self) -> None:
        if self._writer:
            self._writer.release()
            self._writer = None
            logger.info("Wrote %d frames to %s", self.frames_written, self.output_path)

    def __enter__(self) -> "VideoEncoder":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def export_frame(pattern: Path, index: int, frame: ImageBuffer) -> Path:
    target_path = Path(str(pattern).format(index=index, i=index, frame=index))
    target_path.parent.mkdir(parents=True, exist_ok=True)
    pixels = frame.pixels
    if pixels.shape[2] == 1:
        pixels = pixels[..., 0]
    if not cv2.imwrite(str(target_path), np.ascontiguousarray(pixels)):
        raise RuntimeError(f"Failed to write frame {index} to {target_path}")
    logger.debug("Exported frame %d -> %s", index, target_path)
    return target_path
