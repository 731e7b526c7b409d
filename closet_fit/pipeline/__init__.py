"""Fitting pipeline orchestration."""

from .fitting_pipeline import (
    FittingOutcome,
    FittingPipeline,
    FittingRequest,
    GarmentUpload,
    IdempotencyCache,
    make_idempotency_key,
)

__all__ = [
    "FittingOutcome",
    "FittingPipeline",
    "FittingRequest",
    "GarmentUpload",
    "IdempotencyCache",
    "make_idempotency_key",
]
