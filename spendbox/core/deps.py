"""
Request dependencies shared by the routers: the authenticated user, role
checks and the long-lived service objects kept on the application.
"""
from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends, Header, Request

from spendbox.core.errors import Forbidden, Unauthorized
from spendbox.core.security import decode_access_token
from spendbox.db import dynamo
from spendbox.models.user import UserInDB
from spendbox.utils.ai_service import AIAssistant, build_assistant
from spendbox.utils.notifier import NotificationHub
from spendbox.utils.plaid_client import PlaidService, build_plaid_service


def load_user_from_token(token: str) -> UserInDB:
    """Verify a bearer token and load its user. Raises Unauthorized."""
    payload = decode_access_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized()
    item = dynamo.get_user_by_id(user_id)
    if not item:
        raise Unauthorized()
    return UserInDB.model_validate(item)


def get_current_user(authorization: Optional[str] = Header(None)) -> UserInDB:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized()
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise Unauthorized()
    return load_user_from_token(token)


def authorize(*roles: str) -> Callable[..., UserInDB]:
    def checker(user: UserInDB = Depends(get_current_user)) -> UserInDB:
        if user.role not in roles:
            raise Forbidden(f"User role {user.role} is not authorized to access this route")
        return user

    return checker


def get_notifier(request: Request) -> NotificationHub:
    return request.app.state.notifier


@lru_cache
def get_ai_assistant() -> AIAssistant:
    return build_assistant()


@lru_cache
def get_plaid_service() -> PlaidService:
    return build_plaid_service()
