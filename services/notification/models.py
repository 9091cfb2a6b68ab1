from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


# Trace des messages RabbitMQ déjà traités (redélivrance du broker)
class ProcessedMessage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    message_id: str = Field(index=True, unique=True)
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
