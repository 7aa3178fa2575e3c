import uuid

import pytest

from collabhub.auth import USER_ID_HEADER, HeaderAuthenticator
from collabhub.errors import Unauthenticated


def test_resolves_principal_from_header(harness):
    root = harness.user("root", super_admin=True)

    principal = HeaderAuthenticator().resolve(
        {USER_ID_HEADER: str(root.user_id)}, harness.session
    )

    assert principal == root


@pytest.mark.parametrize(
    "headers, message",
    [
        ({}, "Authentication required"),
        ({USER_ID_HEADER: ""}, "Authentication required"),
        ({USER_ID_HEADER: "42"}, "invalid user id"),
        ({USER_ID_HEADER: str(uuid.UUID(int=7))}, "unknown user"),
    ],
)
def test_rejects_bad_headers(harness, headers, message):
    with pytest.raises(Unauthenticated, match=message):
        HeaderAuthenticator().resolve(headers, harness.session)


def test_custom_header_name(harness):
    member = harness.user("member")

    principal = HeaderAuthenticator("X-Caller").resolve(
        {"X-Caller": str(member.user_id)}, harness.session
    )

    assert principal.is_super_admin is False
