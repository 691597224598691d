"""Models for organizations, repositories and organization metadata."""

from typing import Any

from pydantic import BaseModel

from .tag import Tag

__all__ = [
    "Avatar",
    "Delegate",
    "Notification",
    "OrgSet",
    "Organization",
    "Prototype",
    "Prototypes",
    "Repository",
]


class Repository(BaseModel):
    """A repository; ``tags`` is only populated when details are fetched."""

    name: str
    tags: list[Tag] = []


class Organization(BaseModel):
    name: str
    repositories: list[Repository] = []


class OrgSet(BaseModel):
    organizations: list[Organization] = []


class Avatar(BaseModel):
    name: str = ""
    hash: str = ""
    color: str = ""
    kind: str = ""


class Delegate(BaseModel):
    name: str = ""
    kind: str = ""
    is_robot: bool = False
    is_org_member: bool = False
    avatar: Avatar = Avatar()


class Prototype(BaseModel):
    """Default permission granted to a user, robot or team in an org."""

    activating_user: Any = None
    delegate: Delegate = Delegate()
    role: str = ""
    id: str = ""


class Prototypes(BaseModel):
    prototypes: list[Prototype] = []


class Notification(BaseModel):
    """A repository notification (event hook)."""

    id: int | str = 0
    uuid: str = ""
    title: str = ""
    event: str = ""
    method: str = ""
    description: str = ""
    created_at: str = ""
