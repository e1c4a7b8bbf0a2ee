from dataclasses import dataclass, field

from jose import JWTError, jwt
from starlette.requests import Request

from salespipe.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str] = field(default_factory=list)
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.sub


SYSTEM_USER = AuthUser(sub="system", roles=["system"], name="System")


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub="anonymous", roles=["guest"])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub="anonymous", roles=["guest"])

    roles = payload.get("roles", ["user"])
    if not isinstance(roles, list):
        roles = ["user"]
    return AuthUser(
        sub=str(payload.get("sub", "anonymous")),
        roles=[str(role) for role in roles],
        name=str(payload.get("name", "")),
    )
