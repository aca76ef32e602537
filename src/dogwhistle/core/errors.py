"""dogwhistle.core.errors

ROLE: Error taxonomy for the detection core.

FAILURE MODES:
  - SetupError: analyzer/detector cannot be built -> abort startup
  - InvalidFrameLength: producer delivered a frame of the wrong size -> fail fast
  - RecorderError: recorder start/stop failed -> session state resolved, error reported
"""

from __future__ import annotations


class DogWhistleError(Exception):
    """Base class for DogWhistle errors."""


class SetupError(DogWhistleError):
    """Raised once at startup when the FFT backend or detector cannot be configured."""


class InvalidFrameLength(DogWhistleError):
    def __init__(self, expected: int, got: int) -> None:
        super().__init__(f"expected frame of {expected} samples, got {got}")
        self.expected = expected
        self.got = got


class RecorderError(DogWhistleError):
    """Raised when the external recorder fails to start or stop."""
