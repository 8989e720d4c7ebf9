from typing import Generic, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")


class ErrorInfo(BaseModel):
    id: str = ""
    message: str = Field(default="", validation_alias=AliasChoices("message", "msg"))

    @field_validator("id", "message", mode="before")
    @classmethod
    def _null_as_empty(cls, value):
        return "" if value is None else value


class Envelope(BaseModel, Generic[T]):
    """Decoded body of every non-202, non-retryable response"""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    success: bool = False
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None


class ClientConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    root_url: str = "https://api.realengine.ai"
    max_retries: int = Field(default=5, ge=0)
    connect_timeout: float = Field(default=0.5, ge=0)  # seconds
    read_timeout: float = Field(default=2.0, ge=0)
    max_concurrent_requests: int = Field(default=5, gt=0)
    keepalive_timeout: float = Field(default=300.0, ge=0)
    default_wait_ms: int = Field(default=1000, gt=0)
    max_base_wait_ms: int = Field(default=60_000, gt=0)
    caption_deadline: float = Field(default=300.0, gt=0)  # 5 minutes

    @field_validator("token")
    @classmethod
    def _token_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("token must not be blank")
        return value

    @field_validator("root_url")
    @classmethod
    def _root_url_is_http(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("root_url must be an http(s) URL")
        return value
