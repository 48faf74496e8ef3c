"""Optional HTTP Basic authentication for the endpoint."""

from __future__ import annotations

import secrets

from fastapi.security import HTTPBasicCredentials

REALM = "httprunner"


class BasicAuth:
    """Checks Basic credentials against a single ``username:password`` pair.

    The password may itself contain colons; only the first one separates
    the username.
    """

    def __init__(self, userpass: str) -> None:
        username, sep, password = userpass.partition(":")
        if not sep or not username:
            raise ValueError("userpass must look like username:password")
        self._username = username.encode()
        self._password = password.encode()

    @property
    def username(self) -> str:
        return self._username.decode()

    def is_allowed(self, credentials: HTTPBasicCredentials | None) -> bool:
        if credentials is None:
            return False
        # Both halves are always compared
        user_ok = secrets.compare_digest(credentials.username.encode(), self._username)
        pass_ok = secrets.compare_digest(credentials.password.encode(), self._password)
        return user_ok and pass_ok
