from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from livechat.domain.enums import SenderType


class HistoryMessage(BaseModel):
    id: UUID
    sender_type: SenderType
    sender_id: str
    content: str
    metadata: dict | None = None
    timestamp: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_message(cls, message: Any) -> "HistoryMessage":
        return cls(
            id=message.id,
            sender_type=message.sender_type,
            sender_id=message.sender_id,
            content=message.content,
            metadata=message.metadata_json,
            timestamp=message.created_at,
        )
