"""
HTTP routes for the Conduit API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from conduit.dependencies import get_tag_repository, get_user_repository
from conduit.exceptions import DocumentExistsError
from conduit.schemas import (
    LoginRequest,
    NewUserRequest,
    TagsResponse,
    UserBody,
    UserResponse,
)
from conduit.tags import TagRepository
from conduit.users import User, UserRepository

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        user=UserBody(
            id=user.id,
            username=user.username,
            email=user.email,
            bio=user.bio,
            image=user.image,
        )
    )


@router.get("/tags", response_model=TagsResponse)
def list_tags(tags: TagRepository = Depends(get_tag_repository)):
    return TagsResponse(tags=[tag.name for tag in tags.all()])


@router.post("/users", response_model=UserResponse, status_code=201)
def register_user(
    payload: NewUserRequest,
    users: UserRepository = Depends(get_user_repository),
):
    if users.find_by_email(payload.user.email) is not None:
        raise HTTPException(status_code=409, detail="Email already registered")
    user = User(username=payload.user.username, email=payload.user.email)
    user.set_password(payload.user.password)
    try:
        users.create(user)
    except DocumentExistsError:
        raise HTTPException(status_code=409, detail="Email already registered")
    return _user_response(user)


@router.post("/users/login", response_model=UserResponse)
def login_user(
    payload: LoginRequest,
    users: UserRepository = Depends(get_user_repository),
):
    user = users.authenticate(payload.user.email, payload.user.password)
    if user is None:
        logger.info("Failed login for %s", payload.user.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return _user_response(user)
