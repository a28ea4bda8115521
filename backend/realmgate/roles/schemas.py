from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")

Rights = Literal["READ", "WRITE", "ALL"]
Method = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]


class UriRule(BaseModel):
    # exact path, or a prefix when it ends with a single trailing "*"
    url: str = Field(min_length=1, max_length=1024)
    methods: list[Method] = Field(min_length=1)

    @field_validator("methods", mode="before")
    @classmethod
    def _upper_methods(cls, value):
        if isinstance(value, list):
            return [m.upper() if isinstance(m, str) else m for m in value]
        return value


class AccessModule(BaseModel):
    module: str = Field(min_length=1, max_length=100)
    # advisory: stored and returned, not consulted by the access decision
    rights: Rights
    uri: list[UriRule] = Field(default_factory=list)


access_list_adapter = TypeAdapter(list[AccessModule])


def dump_access(modules: list[AccessModule]) -> list[dict]:
    return [m.model_dump(mode="json") for m in modules]


def load_access(raw) -> list[AccessModule]:
    return access_list_adapter.validate_python(raw or [])


class RoleCreate(BaseModel):
    realm_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    access: list[AccessModule] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    access: list[AccessModule] | None = None


class RoleOut(BaseModel):
    id: str
    realm_id: str
    name: str
    description: str | None
    access: list[AccessModule]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class RoleAssignRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)


class RoleUserOut(BaseModel):
    id: str
    email: str
    first_name: str | None
    last_name: str | None
    is_active: bool


class RoleStatsOut(BaseModel):
    total_roles: int
    active_roles: int
    inactive_roles: int
