from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class InboundPayload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class InitPayload(InboundPayload):
    customer_id: str = Field(min_length=1, max_length=120)
    # The widget sends its persisted visitor identity as ``sessionId``.
    visitor_id: str = Field(alias="sessionId", min_length=1, max_length=255)


class ChatPayload(InboundPayload):
    content: str = Field(max_length=4000)
    session_id: str | None = None
