from pydantic import BaseModel


class RegisterRequest(BaseModel):
    email: str


class AuthResponse(BaseModel):
    email: str
    token_type: str = "ApiKey"
    message: str


class FirefliesAccountResponse(BaseModel):
    user_id: str | None = None
    email: str | None = None
    name: str | None = None
    minutes_consumed: float | None = None
    is_admin: bool | None = None
