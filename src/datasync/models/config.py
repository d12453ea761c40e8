"""
Configuration models for sync runs.
"""

import uuid
from enum import Enum
from typing import Dict, Any, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class SyncDirection(str, Enum):
    """Which side is authoritative for a run."""
    SOURCE_TO_DESTINATION = "source_to_destination"
    DESTINATION_TO_SOURCE = "destination_to_source"


class SyncMode(str, Enum):
    """Whether keys missing from the authoritative side are removed."""
    MIRROR = "mirror"
    INSERT_UPDATE = "insert_update"  # additive only, never deletes


class ConflictPolicy(str, Enum):
    """How to resolve a key changed on both sides since the last sync."""
    SOURCE_WINS = "source_wins"
    DESTINATION_WINS = "destination_wins"
    MANUAL = "manual"


class EndpointConfig(BaseModel):
    """Configuration for one side of a sync."""
    model_config = ConfigDict(frozen=True)

    connector: str = Field("filesystem", description="Connector type (memory, filesystem, sqlite, http)")
    locator: str = Field(..., description="Path, database file, URL or store name")
    options: Dict[str, Any] = Field(default_factory=dict, description="Connector-specific options")

    def get_connector_config(self) -> Dict[str, Any]:
        """Get keyword arguments for the connector constructor."""
        return {"locator": self.locator, **self.options}


class RetryPolicy(BaseModel):
    """Retry bounds for transient transfer failures."""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(3, description="Total attempts per item, including the first")
    base_delay: float = Field(0.5, description="First backoff delay in seconds")
    max_delay: float = Field(30.0, description="Upper bound on a single backoff delay")


class SyncConfig(BaseModel):
    """
    Configuration for a single sync run.

    Constructed by the caller before invocation and never mutated by the engine.
    Semantic validation (locators, limits) happens in ``SyncEngine.validate_config``
    so that an invalid config yields a failed result instead of an exception.
    """
    model_config = ConfigDict(frozen=True)

    # Identity
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Identifier for this config")
    name: Optional[str] = Field(None, description="Human-readable name")

    # Endpoints
    source: EndpointConfig = Field(..., description="Source endpoint")
    destination: EndpointConfig = Field(..., description="Destination endpoint")

    # Key filters (glob patterns)
    include: Tuple[str, ...] = Field(default_factory=tuple, description="Only keys matching one of these")
    exclude: Tuple[str, ...] = Field(default_factory=tuple, description="Drop keys matching any of these")

    # Policies
    direction: SyncDirection = Field(SyncDirection.SOURCE_TO_DESTINATION)
    mode: SyncMode = Field(SyncMode.MIRROR)
    conflict_policy: ConflictPolicy = Field(ConflictPolicy.MANUAL)

    # Execution
    concurrency_limit: int = Field(4, description="Maximum transfers in flight")
    dry_run: bool = Field(False, description="Compute decisions without touching the destination")
    abort_on_error: bool = Field(False, description="Cancel pending work after the first failure")
    verify_writes: bool = Field(True, description="Re-check fingerprints after each write")
    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    @property
    def authoritative(self) -> str:
        """Name of the side whose data wins ("source" or "destination")."""
        if self.direction == SyncDirection.DESTINATION_TO_SOURCE:
            return "destination"
        return "source"
