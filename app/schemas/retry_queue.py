from typing import Literal, Optional

from pydantic import BaseModel


class RetryQueueAction(BaseModel):
    action: Literal["clear", "retry"]
    queueItemId: Optional[str] = None
