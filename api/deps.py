from typing import List

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.security import decode_access_token
from models.profile import Profile, UserRole
from services.chat_service import ChatService

security = HTTPBearer()

_chat_service = None


def get_chat_service() -> ChatService:
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService()
    return _chat_service


async def get_current_user_from_token(token: str) -> Profile | None:
    user_id = decode_access_token(token)
    if user_id is None:
        return None
    return await Profile.get_or_none(id=user_id)


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Profile:
    user = await get_current_user_from_token(credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_role(allowed_roles: List[UserRole]):
    async def role_checker(
            current_user: Profile = Depends(get_current_user)
    ) -> Profile:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {', '.join(r.value for r in allowed_roles)}"
            )
        return current_user

    return role_checker
