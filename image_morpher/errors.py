from __future__ import annotations


class MorphError(Exception):
    """Base class for every error raised by the morphing engine."""


class ValidationError(MorphError, ValueError):
    """Malformed input detected while building a session or a sequence."""


class EmptyCorrespondenceError(ValidationError):
    """No feature primitives were supplied, so no deformation is defined."""


class InvalidCoordinateError(MorphError, ArithmeticError):
    """A non-finite coordinate reached the resampler.

    This points at a broken warp computation rather than at bad input, and is
    never recovered from inside the engine.
    """


class CancelledError(MorphError):
    pass


class GenerationTimeoutError(MorphError, TimeoutError):
    pass
