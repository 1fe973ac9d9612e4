"""FastAPI dependencies shared by the route modules.

Authentication happens upstream of this service; the gateway forwards the
authenticated user's id in the ``X-User-Id`` header.
"""

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from flowdesk.workflows.orchestrator import WorkflowOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str:
    """Return the caller's user id.

    Raises:
        HTTPException: 401 if the header is missing or blank.
    """
    if x_user_id is None or not x_user_id.strip():
        logger.warning("AUTH: Request without X-User-Id header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return x_user_id.strip()


# Type aliases for dependency injection
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
Orchestrator = Annotated[WorkflowOrchestrator, Depends(get_orchestrator)]
