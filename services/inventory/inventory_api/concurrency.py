"""
Optimistic concurrency helpers.

Versioned rows expose their version as a strong ETag. Clients send it back in
If-Match on updates; a mismatch means someone else changed the row first.
"""
from typing import Optional
from fastapi import Response

from .exceptions import PreconditionFailedError


def etag_for(entity) -> str:
    return f'"{entity.version}"'


def set_etag(response: Response, entity) -> None:
    response.headers["ETag"] = etag_for(entity)


def check_if_match(if_match: Optional[str], entity) -> None:
    """
    Compare an If-Match header with the entity's current version.

    Args:
        if_match: Raw header value (may list several tags, or be "*")
        entity: ORM object with a version column

    Raises:
        PreconditionFailedError: If the header is present and no tag matches
    """
    if not if_match:
        return

    current = etag_for(entity)
    for tag in if_match.split(","):
        tag = tag.strip()
        if tag.startswith("W/"):
            tag = tag[2:]
        if tag == "*" or tag == current:
            return
    raise PreconditionFailedError()
