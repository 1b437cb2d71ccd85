from pydantic import BaseModel, field_validator


class LoginRequest(BaseModel):
    username: str
    password: str

    @field_validator('username', 'password')
    @classmethod
    def validate_not_empty(cls, value):
        if not value or not value.strip():
            raise ValueError('Username and password are required')
        return value


class UserInfo(BaseModel):
    id: int
    username: str


class LoginResponse(BaseModel):
    success: bool = True
    user: UserInfo


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class CreateAdminRequest(BaseModel):
    username: str
    password: str

    @field_validator('username')
    @classmethod
    def validate_username(cls, value):
        value = value.strip()
        if not value:
            raise ValueError('Username is required')
        return value

    @field_validator('password')
    @classmethod
    def validate_password(cls, value):
        if len(value) < 8:
            raise ValueError('Password must be at least 8 characters long')
        return value


class CreateAdminResponse(BaseModel):
    success: bool = True
    message: str
    username: str
