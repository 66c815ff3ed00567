from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    session_id: UUID | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatResponse(BaseModel):
    id: UUID
    session_id: UUID
    customer_id: UUID
    message: str
    response: str
    timestamp: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
