from typing import Any, Dict, Optional

from pydantic import BaseModel


class RegisterUser(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginUser(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class SaveWorkspace(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class SaveEnv(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    variables: Any = {}


class EnvironmentUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    name: Optional[str] = None
    description: Optional[str] = None
    variables: Any = None

    def changes(self) -> Dict[str, Any]:
        return {k: getattr(self, k) for k in self.model_fields_set}


class SaveRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    method: Optional[str] = None
    url: Optional[str] = None
    headers: Dict[str, str] = {}
    body: Optional[Any] = None
    query_params: Dict[str, Any] = {}
    collection_id: Optional[int] = None
    folder_id: Optional[int] = None


class ExecuteRequest(BaseModel):
    environment_id: Optional[int] = None


class AssignRole(BaseModel):
    user_id: Optional[int] = None
    role_id: Optional[int] = None


class UpdateRole(BaseModel):
    role_id: Optional[int] = None
