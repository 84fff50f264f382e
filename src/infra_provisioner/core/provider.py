"""Provider context - explicit region/environment settings for a run."""

from pydantic import BaseModel, ConfigDict, Field


class ProviderContext(BaseModel):
    """Shared provider settings threaded through graph building and apply.

    Examples:
        ctx = ProviderContext(
            region="us-east-1",
            environment="prod",
            default_tags={"Environment": "prod"},
        )
    """

    model_config = ConfigDict(frozen=True)

    region: str | None = None
    environment: str | None = None
    default_tags: dict[str, str] = Field(default_factory=dict)

    def merge_tags(self, tags: dict[str, str] | None) -> dict[str, str]:
        """Default tags overlaid with node-specific *tags* (node wins)."""
        return {**self.default_tags, **(tags or {})}
