"""
Request-scoped dependencies for FastAPI.

Authentication is handled upstream (gateway); this service only needs the
identity of the operator on whose behalf a mutating call is made.
"""

from fastapi import Header

from terminal_backend.app.core.exceptions import InvalidArgumentError


async def get_actor(
    x_actor_id: str = Header(..., min_length=1, max_length=100, description="Operator performing the change")
) -> str:
    """
    FastAPI dependency returning the actor identifier for audit fields.

    Every mutating tariff operation records this value in the version
    history and the audit log.

    Returns:
        Actor identifier taken from the X-Actor-Id header

    Raises:
        InvalidArgumentError: Header is blank
    """
    actor = x_actor_id.strip()
    if not actor:
        raise InvalidArgumentError("X-Actor-Id header must not be blank", details={"header": "X-Actor-Id"})
    return actor
