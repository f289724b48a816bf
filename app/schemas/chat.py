from pydantic import BaseModel, ConfigDict


class Chat(BaseModel):
    """One turn of a conversation, e.g. Chat(role="user", content="Hi")."""

    model_config = ConfigDict(frozen=True)

    role: str
    content: str

    @classmethod
    def system(cls, content: str) -> "Chat":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Chat":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> "Chat":
        return cls(role="assistant", content=content)
