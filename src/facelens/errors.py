from __future__ import annotations


class FaceLensError(Exception):
    """Base class for everything facelens raises on purpose."""


class InitializationFailure(FaceLensError):
    """The detector or the camera failed to start. Retry is up to the user."""


class DeviceUnavailable(FaceLensError):
    """No camera device could be opened."""


class TransientDetectionError(FaceLensError):
    """A single detector call failed; the frame counts as 'no face'."""


class AssetLoadFailure(FaceLensError):
    """An optional overlay asset could not be loaded."""


class CaptureError(FaceLensError):
    """Snapshot or recording output could not be produced."""


class LandmarkTopologyError(FaceLensError, ValueError):
    """A detected face has fewer points than the landmark indices require."""
