"""Request authentication.

Token verification happens upstream; by the time a request reaches this
service it carries the caller's id in ``X-User-ID``. The authenticator only
resolves that id into a :class:`~collabhub.access.Principal`.
"""

from __future__ import annotations

import uuid
from typing import Mapping, Protocol

from sqlalchemy.orm import Session

from .access import Principal
from .errors import Unauthenticated
from .models import User

__all__ = ["USER_ID_HEADER", "Authenticator", "HeaderAuthenticator"]

USER_ID_HEADER = "X-User-ID"


class Authenticator(Protocol):
    def resolve(self, headers: Mapping[str, str], session: Session) -> Principal: ...


class HeaderAuthenticator:
    """Resolve the principal from the user id header."""

    def __init__(self, header: str = USER_ID_HEADER):
        self.header = header

    def resolve(self, headers: Mapping[str, str], session: Session) -> Principal:
        raw = headers.get(self.header)
        if not raw:
            raise Unauthenticated()
        try:
            user_id = uuid.UUID(raw)
        except ValueError:
            raise Unauthenticated("invalid user id") from None

        user = session.get(User, user_id)
        if user is None:
            raise Unauthenticated("unknown user")
        return Principal(user_id=user.id, is_super_admin=user.is_super_admin)
