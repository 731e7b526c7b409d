"""Error taxonomy for the fitting pipeline."""

from typing import Any


class FittingError(Exception):
    """Base error. Carries the pipeline stage and enough context to reproduce."""

    def __init__(self, message: str, stage: str | None = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.context = context

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage:
            parts.insert(0, f"[{self.stage}]")
        if self.context:
            details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
            parts.append(f"({details})")
        return " ".join(parts)


class InvalidImage(FittingError):
    """Input bytes could not be decoded, or decoded to a zero-size image."""


class DimensionError(FittingError):
    """Bad target size, or buffers that do not share the canonical canvas."""


class MaskDerivationFailed(FittingError):
    """Alpha-derived mask requested on an image without usable alpha."""


class ExternalServiceError(FittingError):
    """The external edit / background-removal service failed."""

    def __init__(self, message: str, stage: str | None = None, status_code: int | None = None, **context: Any):
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, stage=stage, **context)
        self.status_code = status_code


class ExternalServiceTimeout(ExternalServiceError):
    """The external call did not finish within its timeout."""


class NoHumanRegionDetected(FittingError):
    """No trusted skin cluster. Not fatal: a default region is synthesized."""


class AmbiguousHumanRegion(FittingError):
    """Several people were found and the caller has to pick one."""

    def __init__(self, message: str, regions: list | None = None, **context: Any):
        super().__init__(message, stage="region_selection", **context)
        self.regions = list(regions or [])


class PlacementError(FittingError):
    """A single garment could not be fitted onto the canvas."""
