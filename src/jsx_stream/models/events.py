"""
Stream Event Schema
===================

Pydantic schema for the events carried in SSE data frames.

Every frame is a JSON object with a "type" discriminator:

    content_block_start  {metadata: {componentId?, componentName, position?}}
    content_block_delta  {metadata: {componentId}, delta: {text}}
    content_block_stop   {metadata: {componentId, isComplete?}}
    message_start        {}
    message_stop         {}
    error                {message?, code?, retryable?, metadata?: {componentId?}}

Design Rules:
    - Unknown fields are ignored, unknown types are rejected
    - Wire names are camelCase, attribute names snake_case
    - Validation only; applying events is the ingestor's job

Example:
    from jsx_stream.models.events import parse_event

    event = parse_event({
        "type": "content_block_start",
        "metadata": {"componentName": "Hero", "position": "header"},
    })
    event.component_id   # 'hero'
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from jsx_stream.models.component import Position, component_id_from_name


class _WireModel(BaseModel):
    class Config:
        populate_by_name = True
        frozen = True


class StartMetadata(_WireModel):
    """Metadata announcing a new component."""

    component_id: Optional[str] = Field(
        default=None,
        alias="componentId",
        description="Component id; derived from the name when absent",
    )
    component_name: str = Field(
        ...,
        alias="componentName",
        min_length=1,
        description="Component name",
    )
    position: Position = Field(
        default=Position.MAIN,
        description="Page section",
    )

    @field_validator("position", mode="before")
    @classmethod
    def _parse_position(cls, value: Any) -> Position:
        return Position.parse(value)


class BlockMetadata(_WireModel):
    component_id: str = Field(..., alias="componentId", min_length=1)


class StopMetadata(BlockMetadata):
    is_complete: bool = Field(
        default=True,
        alias="isComplete",
        description="Upstream's own view of whether the component finished",
    )


class TextDelta(_WireModel):
    text: str = Field(default="", description="Code fragment")


class ErrorMetadata(_WireModel):
    component_id: Optional[str] = Field(default=None, alias="componentId")


class ContentBlockStart(_WireModel):
    type: Literal["content_block_start"]
    metadata: StartMetadata

    @property
    def component_id(self) -> str:
        return self.metadata.component_id or component_id_from_name(self.metadata.component_name)


class ContentBlockDelta(_WireModel):
    type: Literal["content_block_delta"]
    metadata: BlockMetadata
    delta: TextDelta = Field(default_factory=TextDelta)

    @property
    def component_id(self) -> str:
        return self.metadata.component_id


class ContentBlockStop(_WireModel):
    type: Literal["content_block_stop"]
    metadata: StopMetadata

    @property
    def component_id(self) -> str:
        return self.metadata.component_id


class MessageStart(_WireModel):
    type: Literal["message_start"]


class MessageStop(_WireModel):
    type: Literal["message_stop"]


class StreamError(_WireModel):
    """Error reported by the upstream inside the stream."""

    type: Literal["error"]
    message: Optional[str] = Field(default=None, description="Human-readable error")
    error: Optional[Any] = Field(default=None, description="Alternate error payload")
    code: Optional[str] = Field(default=None, description="Upstream error code")
    retryable: bool = Field(default=True, description="Whether a retry may succeed")
    metadata: Optional[ErrorMetadata] = None

    @property
    def component_id(self) -> Optional[str]:
        return self.metadata.component_id if self.metadata else None

    @property
    def description(self) -> str:
        if self.message:
            return self.message
        if isinstance(self.error, dict) and self.error.get("message"):
            return str(self.error["message"])
        if self.error:
            return str(self.error)
        return self.code or "unknown upstream error"


StreamEvent = Annotated[
    Union[
        ContentBlockStart,
        ContentBlockDelta,
        ContentBlockStop,
        MessageStart,
        MessageStop,
        StreamError,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(StreamEvent)


def parse_event(data: dict) -> StreamEvent:
    """
    Validate a decoded frame into a typed event.

    Raises:
        pydantic.ValidationError: Unknown type or missing fields
    """
    return _EVENT_ADAPTER.validate_python(data)
