# storefront/domain/owner.py
"""Cart ownership: a cart belongs either to a user or to a guest session, never both."""
import uuid
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class UserOwner:
    user_id: str

    @property
    def key(self) -> str:
        return f"user:{self.user_id}"


@dataclass(frozen=True)
class GuestOwner:
    session_id: str

    @property
    def key(self) -> str:
        return f"guest:{self.session_id}"


Owner = Union[UserOwner, GuestOwner]


def new_guest() -> GuestOwner:
    return GuestOwner(session_id=uuid.uuid4().hex)


def resolve_owner(user_id: str | None, session_id: str | None, generate: bool = False) -> Owner | None:
    # zalogowany user ma pierwszenstwo przed sesja goscia
    if user_id:
        return UserOwner(user_id=str(user_id))
    if session_id:
        return GuestOwner(session_id=session_id)
    if generate:
        return new_guest()
    return None


def owner_columns(owner: Owner) -> dict:
    if isinstance(owner, UserOwner):
        return {"user_id": owner.user_id, "session_id": None}
    return {"user_id": None, "session_id": owner.session_id}


def owner_of(row) -> Owner:
    """Owner of a row carrying ``user_id``/``session_id`` columns."""
    if row.user_id is not None:
        return UserOwner(user_id=row.user_id)
    return GuestOwner(session_id=row.session_id)


def owns(owner: Owner, row) -> bool:
    return owner_of(row) == owner
