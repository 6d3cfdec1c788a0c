from __future__ import annotations

import logging
import math
import os
import threading
import time
from concurrent import futures
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .blend import blend_arrays
from .correspondence import CorrespondenceSet, FeaturePrimitive
from .errors import CancelledError, GenerationTimeoutError, ValidationError
from .image_buffer import ImageBuffer
from .resample import check_edge_policy, resample
from .warp_field import WarpConfig, field_at

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_ROWS = 64
_POLL_INTERVAL = 0.05


class CancellationToken:
    """Cooperative cancellation flag shared by the frame tasks of a generation pass.

    A token may be chained to a parent (cancelling the parent cancels the
    child, not the other way round) and may carry a deadline after which it
    reports itself as cancelled.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None, timeout: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._parent = parent
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        if self._event.is_set() or self.expired:
            return True
        return self._parent is not None and self._parent.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError("Morph generation cancelled")


@dataclass(frozen=True)
class MorphSession:
    image_a: ImageBuffer
    image_b: ImageBuffer
    correspondences: CorrespondenceSet
    warp: WarpConfig = field(default_factory=WarpConfig)
    edge_policy: str = "clamp"
    _swapped: CorrespondenceSet = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.image_a.same_layout(self.image_b):
            raise ValidationError(
                "Source images must share dimensions, channels and dtype: "
                f"{self.image_a!r} vs {self.image_b!r}"
            )
        object.__setattr__(self, "edge_policy", check_edge_policy(self.edge_policy))
        object.__setattr__(self, "_swapped", self.correspondences.swapped())

    @classmethod
    def create(
        cls,
        image_a: Union[ImageBuffer, np.ndarray],
        image_b: Union[ImageBuffer, np.ndarray],
        features_a: Sequence[FeaturePrimitive],
        features_b: Sequence[FeaturePrimitive],
        *,
        warp: Optional[WarpConfig] = None,
        edge_policy: str = "clamp",
    ) -> "MorphSession":
        if not isinstance(image_a, ImageBuffer):
            image_a = ImageBuffer(image_a)
        if not isinstance(image_b, ImageBuffer):
            image_b = ImageBuffer(image_b)
        correspondences = CorrespondenceSet.build(
            features_a, features_b, width=image_a.width, height=image_a.height
        )
        return cls(image_a, image_b, correspondences, warp or WarpConfig(), edge_policy)

    @property
    def width(self) -> int:
        return self.image_a.width

    @property
    def height(self) -> int:
        return self.image_a.height

    @property
    def size(self) -> Tuple[int, int]:
        return self.image_a.size

    @property
    def swapped_correspondences(self) -> CorrespondenceSet:
        return self._swapped


def render_frame(
    session: MorphSession,
    t: float,
    *,
    cancel: Optional[CancellationToken] = None,
    chunk_rows: int = DEFAULT_CHUNK_ROWS,
) -> ImageBuffer:
    """Render the in-between frame at ``t`` scanline band by scanline band."""
    width, height = session.size
    field_a = field_at(t, session.correspondences, width, height, session.warp)
    field_b = field_at(1.0 - t, session.swapped_correspondences, width, height, session.warp)
    out = np.empty((height, width, session.image_a.channels), dtype=session.image_a.dtype)
    for y0 in range(0, height, chunk_rows):
        if cancel is not None:
            cancel.raise_if_cancelled()
        y1 = min(height, y0 + chunk_rows)
        ax, ay = field_a.rows(y0, y1)
        bx, by = field_b.rows(y0, y1)
        warped_a = resample(session.image_a, ax, ay)
        warped_b = resample(session.image_b, bx, by)
        out[y0:y1] = blend_arrays(warped_a, warped_b, t, dtype=out.dtype)
    return ImageBuffer(out)


class MorphSequence:
    """Lazy, finite and restartable sequence of morph frames.

    Each call to ``iter()`` starts a new generation pass from frame 0 that
    yields bit-identical frames. A pass is not seekable. Cancelling the token
    passed to :func:`generate` ends the current pass quietly; a timeout raises
    :class:`GenerationTimeoutError`.
    """

    def __init__(
        self,
        session: MorphSession,
        frame_count: int,
        *,
        workers: int,
        cancel: Optional[CancellationToken],
        timeout: Optional[float],
        chunk_rows: int,
    ) -> None:
        self.session = session
        self.frame_count = frame_count
        self.workers = workers
        self.cancel = cancel
        self.timeout = timeout
        self.chunk_rows = chunk_rows

    def __len__(self) -> int:
        return self.frame_count

    def time_at(self, index: int) -> float:
        return index / (self.frame_count - 1)

    def times(self) -> List[float]:
        return [self.time_at(i) for i in range(self.frame_count)]

    def __iter__(self) -> Iterator[ImageBuffer]:
        return self._run()

    def _run(self) -> Iterator[ImageBuffer]:
        token = CancellationToken(parent=self.cancel, timeout=self.timeout)
        logger.info(
            "Generating %d frames at %dx%d with %d worker(s)",
            self.frame_count,
            self.session.width,
            self.session.height,
            self.workers,
        )
        try:
            if self.workers == 1:
                yield from self._run_inline(token)
            else:
                yield from self._run_pooled(token)
        except CancelledError:
            if token.expired:
                raise GenerationTimeoutError(f"Morph generation exceeded {self.timeout} seconds") from None
            logger.info("Morph generation cancelled")

    def _render(self, index: int, token: CancellationToken) -> ImageBuffer:
        frame = render_frame(self.session, self.time_at(index), cancel=token, chunk_rows=self.chunk_rows)
        logger.debug("Rendered frame %d/%d", index + 1, self.frame_count)
        return frame

    def _run_inline(self, token: CancellationToken) -> Iterator[ImageBuffer]:
        for index in range(self.frame_count):
            token.raise_if_cancelled()
            yield self._render(index, token)

    def _run_pooled(self, token: CancellationToken) -> Iterator[ImageBuffer]:
        window = 2 * self.workers
        pending = {}
        next_index = 0
        executor = futures.ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="morph")
        try:
            for index in range(self.frame_count):
                while next_index < self.frame_count and next_index < index + window:
                    pending[next_index] = executor.submit(self._render, next_index, token)
                    next_index += 1
                yield self._wait(pending.pop(index), token)
        finally:
            token.cancel()
            for future in pending.values():
                future.cancel()
            executor.shutdown(wait=True)

    @staticmethod
    def _wait(future: futures.Future, token: CancellationToken) -> ImageBuffer:
        while True:
            token.raise_if_cancelled()
            done, _ = futures.wait([future], timeout=_POLL_INTERVAL)
            if done:
                return future.result()


def generate(
    session: MorphSession,
    frame_count: int,
    *,
    workers: Optional[int] = None,
    cancel: Optional[CancellationToken] = None,
    timeout: Optional[float] = None,
    chunk_rows: int = DEFAULT_CHUNK_ROWS,
) -> MorphSequence:
    """Validate the request and return the lazy frame sequence.

    Frame ``i`` is rendered at ``t = i / (frame_count - 1)``, so the first and
    last frames sit exactly on image A and image B geometry. Nothing is
    computed until the sequence is iterated.
    """
    if isinstance(frame_count, bool) or not isinstance(frame_count, int) or frame_count < 2:
        raise ValidationError(f"frame_count must be an integer >= 2, got {frame_count!r}")
    if workers is None:
        workers = max(1, min(frame_count, os.cpu_count() or 1))
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        raise ValidationError(f"workers must be a positive integer, got {workers!r}")
    if isinstance(chunk_rows, bool) or not isinstance(chunk_rows, int) or chunk_rows < 1:
        raise ValidationError(f"chunk_rows must be a positive integer, got {chunk_rows!r}")
    if timeout is not None and (not math.isfinite(timeout) or timeout <= 0):
        raise ValidationError(f"timeout must be a positive number of seconds, got {timeout!r}")
    return MorphSequence(
        session,
        frame_count,
        workers=workers,
        cancel=cancel,
        timeout=timeout,
        chunk_rows=chunk_rows,
    )
