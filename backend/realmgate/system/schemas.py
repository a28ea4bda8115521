from pydantic import BaseModel, Field


class BootstrapRequest(BaseModel):
    admin_password: str = Field(min_length=8, max_length=72)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)


class BootstrapResponse(BaseModel):
    admin_id: str
    admin_email: str
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
