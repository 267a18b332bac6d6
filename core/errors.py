"""Error taxonomy for the anomaly cascade engine.

None of these are fatal to the process: each one degrades to skipping the
current frame's enhancement or the current cascade attempt.
"""

from __future__ import annotations


class CascadeEngineError(Exception):
    """Base class for recoverable engine failures."""


class ImageDecodeError(CascadeEngineError):
    """Raised when image bytes cannot be decoded or lack readable dimensions."""


class GeometryError(CascadeEngineError):
    """Raised when anomaly cells do not fit the model input grid."""


class DownstreamCallError(CascadeEngineError):
    """Raised when the secondary vision model call fails or returns junk."""


class ControlInputError(CascadeEngineError):
    """Raised for malformed control messages or threshold values."""
