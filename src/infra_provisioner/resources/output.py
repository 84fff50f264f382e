"""Exported output declarations."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from infra_provisioner.resources.references import parse_references


class OutputSpec(BaseModel):
    """A value exported after apply, typically a reference such as an endpoint."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(pattern=r"^[a-zA-Z0-9_-]+$")
    value: Any
    description: str = ""
    sensitive: bool = False

    @field_validator("value", mode="before")
    @classmethod
    def _parse_value_references(cls, value: Any) -> Any:
        return parse_references(value)
