"""Base Pydantic model configuration for Pulpit models.

Domain models inherit from PulpitBaseModel:
- Immutability (frozen=True) so sessions and outcomes can be shared across tasks
- Strict validation (extra="forbid") to catch typos and invalid fields
- Flexible field naming (populate_by_name=True) for camelCase wire aliases

Wire messages received from devices inherit from WireModel instead, which
ignores unknown fields so newer app builds do not break older servers.
"""

from pydantic import BaseModel, ConfigDict


class PulpitBaseModel(BaseModel):
    """Base model for Pulpit domain entities.

    Example:
        >>> class MyModel(PulpitBaseModel):
        ...     name: str
        >>> MyModel(name="test").name
        'test'
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        use_enum_values=False,
        validate_default=True,
        validate_assignment=True,
    )


class WireModel(BaseModel):
    """Base model for JSON frames exchanged with devices."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )
