from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentdock.sessions.models import Provider


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Sessions ---


class CreateSessionRequest(_Request):
    project_path: str
    provider: Provider = Provider.CLAUDE_CODE
    context: str | None = None


class UpdateSessionRequest(_Request):
    context: str | None = None
    metadata: dict | None = None


# --- Messages ---


class SendMessageRequest(_Request):
    content: str = Field(min_length=1)
    model: str | None = None
    allowed_tools: list[str] | None = None
