from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class MessageCreate(BaseModel):

    text: str = Field(min_length=1)
    type: str = "text"


class ChatFrame(BaseModel):
    """A request received on the chat websocket."""

    type: Literal["text", "read"] = "text"
    channel: str = Field(min_length=1)
    text: Optional[str] = None
    client_message_id: Optional[str] = None

    @model_validator(mode="after")
    def text_frames_carry_text(self):
        if self.type == "text" and not self.text:
            raise ValueError("text frames need a non-empty text")
        return self
