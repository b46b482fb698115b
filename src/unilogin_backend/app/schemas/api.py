# src/unilogin_backend/app/schemas/api.py

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelBody(BaseModel):
    # clients post camelCase (redirectUri); snake_case is accepted too
    model_config = ConfigDict(populate_by_name=True)


class AuthorizeBody(_CamelBody):
    provider: str
    platform: str
    redirect_uri: str = Field(alias="redirectUri", min_length=1)
    state: str = Field(min_length=1, max_length=512)
    code_challenge: Optional[str] = Field(default=None, alias="codeChallenge")
    code_challenge_method: Optional[str] = Field(default=None, alias="codeChallengeMethod")


class AuthorizeResponse(_CamelBody):
    authorization_url: str = Field(serialization_alias="authorizationUrl")
    state: str


class TokenBody(_CamelBody):
    provider: str
    platform: Optional[str] = None  # informational; the stored platform is used
    code: str = Field(min_length=1)
    state: str = Field(min_length=1, max_length=512)
    code_verifier: Optional[str] = Field(default=None, alias="codeVerifier")


class UserOut(_CamelBody):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    image_url: Optional[str] = Field(default=None, serialization_alias="imageUrl")


class TokenResponse(_CamelBody):
    token: str
    user: UserOut


class ProvidersResponse(BaseModel):
    providers: List[str]
