from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from supportrelay.services.chat_session import AgentChannel, AgentRef, Attachment, Participant

DEFAULT_DASHBOARD_AGENT_ID = "dashboard"
DEFAULT_DASHBOARD_AGENT_NAME = "Support Agent"


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class SocketEvent(BaseModel):
    """Envelope of every socket frame: {"event": ..., "data": {...}}."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class AttachmentFields(BaseModel):
    file_url: Optional[str] = Field(None, validation_alias=_alias("file_url", "fileUrl"))
    file_name: Optional[str] = Field(None, validation_alias=_alias("file_name", "fileName"))
    file_type: Optional[str] = Field(None, validation_alias=_alias("file_type", "fileType"))

    def to_attachment(self) -> Optional[Attachment]:
        if not self.file_url:
            return None
        return Attachment(
            url=self.file_url,
            name=self.file_name or "attachment",
            mime_type=self.file_type or "application/octet-stream",
        )


class ParticipantFields(BaseModel):
    user_first_name: Optional[str] = Field(
        None, validation_alias=_alias("user_first_name", "userFirstName", "first_name", "firstName")
    )
    user_last_name: Optional[str] = Field(
        None, validation_alias=_alias("user_last_name", "userLastName", "last_name", "lastName")
    )
    user_id: Optional[str] = Field(None, validation_alias=_alias("user_id", "userId"))

    @field_validator("user_id", mode="before")
    @classmethod
    def _user_id_as_text(cls, value):
        return str(value) if value is not None else None

    def to_participant(self) -> Optional[Participant]:
        if not (self.user_first_name or self.user_last_name or self.user_id):
            return None
        return Participant(
            first_name=self.user_first_name,
            last_name=self.user_last_name,
            user_id=self.user_id,
        )


class UserMessagePayload(ParticipantFields, AttachmentFields):
    text: str = Field("", validation_alias=_alias("text", "message"))


class UserInfoPayload(ParticipantFields):
    pass


class AgentAction(BaseModel):
    chat_id: str = Field(min_length=1, validation_alias=_alias("chat_id", "chatId"))
    agent_id: str = Field(DEFAULT_DASHBOARD_AGENT_ID, validation_alias=_alias("agent_id", "agentId"))
    agent_name: str = Field(DEFAULT_DASHBOARD_AGENT_NAME, validation_alias=_alias("agent_name", "agentName"))

    @field_validator("agent_id", mode="before")
    @classmethod
    def _agent_id_as_text(cls, value):
        return str(value) if value is not None else DEFAULT_DASHBOARD_AGENT_ID

    def agent(self) -> AgentRef:
        return AgentRef(agent_id=self.agent_id, name=self.agent_name, channel=AgentChannel.DASHBOARD)


class TakeoverRequest(AgentAction):
    pass


class SendMessageRequest(AgentAction, AttachmentFields):
    text: str = Field("", validation_alias=_alias("text", "message"))


class ReleaseRequest(BaseModel):
    chat_id: str = Field(min_length=1, validation_alias=_alias("chat_id", "chatId"))
    # Without an agent the release is unconditional.
    agent_id: Optional[str] = Field(None, validation_alias=_alias("agent_id", "agentId"))
    agent_name: Optional[str] = Field(None, validation_alias=_alias("agent_name", "agentName"))

    def agent(self) -> Optional[AgentRef]:
        if not self.agent_id:
            return None
        return AgentRef(
            agent_id=self.agent_id,
            name=self.agent_name or DEFAULT_DASHBOARD_AGENT_NAME,
            channel=AgentChannel.DASHBOARD,
        )


class SessionRequest(ParticipantFields):
    chat_id: Optional[str] = Field(None, validation_alias=_alias("chat_id", "chatId"))


class ActionResponse(BaseModel):
    success: bool
    chat_id: str
    mode: Optional[str] = None
    agent_id: Optional[str] = None
    message: Optional[str] = None
