"""Session and state tracking models for one fitting request."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field

from .geometry import HumanRegion, Placement


class FittingState(str, Enum):
    IDLE = "idle"
    NORMALIZING = "normalizing"
    BUILDING_MASK = "building_mask"
    AWAITING_EXTERNAL_EDIT = "awaiting_external_edit"
    GUARDING = "guarding"
    HEURISTIC_PLACEMENT = "heuristic_placement"
    DONE = "done"
    FAILED = "failed"


class GarmentFailure(BaseModel):
    """A garment whose contribution was dropped from the composite."""
    garment_id: str
    category: str
    error: str


class FittingSession(BaseModel):
    """Complete state for a single fitting request."""

    session_id: str
    idempotency_key: str | None = None

    # State machine history, first entry is always IDLE
    states: list[FittingState] = Field(default_factory=lambda: [FittingState.IDLE])

    # Outcome
    path: str | None = None  # "external" or "heuristic"
    status: str = "initialized"  # initialized, running, completed, needs_selection, failed
    final_message: str | None = None
    fallback_reason: str | None = None

    # Heuristic path details
    regions: list[HumanRegion] = Field(default_factory=list)
    selected_region: int | None = None
    placements: list[Placement] = Field(default_factory=list)
    garment_failures: list[GarmentFailure] = Field(default_factory=list)

    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None

    @computed_field
    @property
    def state(self) -> FittingState:
        """Current state."""
        return self.states[-1]

    @computed_field
    @property
    def needs_selection(self) -> bool:
        return self.status == "needs_selection"

    def transition(self, state: FittingState) -> None:
        self.states.append(state)

    def complete(self) -> None:
        self.transition(FittingState.DONE)
        self.status = "completed"
        self.completed_at = datetime.now()

    def fail(self, message: str) -> None:
        self.transition(FittingState.FAILED)
        self.status = "failed"
        self.final_message = message
        self.completed_at = datetime.now()
