from pydantic import BaseModel


class PermissionSetPayload(BaseModel):
    pages: dict[str, bool]
    actions: dict[str, bool]


class RolePermissionsResponse(BaseModel):
    role: str
    pages: dict[str, bool]
    actions: dict[str, bool]
