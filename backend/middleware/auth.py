"""
Authentication Middleware
Owner access is a bearer capability: whoever holds the editToken edits the page.
"""
from typing import Optional

from fastapi import Header, Query

from core.errors import ValidationFailure
from core.sanitize import clean_id


def get_edit_token(
    edit_token: Optional[str] = Query(None, alias="editToken"),
    x_edit_token: Optional[str] = Header(None),
) -> str:
    """
    Read the editToken from the query string or the X-Edit-Token header.

    Only presence is checked here; an unknown token surfaces as 404 from the
    service that looks it up, so a caller can never tell "exists" apart from
    "exists but not yours".

    Raises:
        ValidationFailure: 400 if no token was sent
    """
    token = clean_id(edit_token or x_edit_token, 180)
    if not token:
        raise ValidationFailure("Missing editToken", code="missing_edit_token")
    return token
