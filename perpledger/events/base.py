"""
Base event model

Events are immutable facts decoded from chain data. They use Pydantic for
validation and are never modified after creation.
"""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BaseEvent(BaseModel):
    """
    Base class for all events in the system

    Timestamps always come from the chain (block time), never from the
    server clock, so there is no default factory for them.
    """

    event_type: str = Field(description="Type of event (e.g., 'trade')")
    timestamp: datetime = Field(description="Block time of the originating transaction (UTC)")

    # Extensibility
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional metadata specific to this event"
    )

    model_config = ConfigDict(frozen=True)
