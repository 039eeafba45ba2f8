"""Shared route dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from xnscore.service import XnScoreService


def get_service(request: Request) -> XnScoreService:
    """Service instance bound to the application by create_app()."""
    service: XnScoreService = request.app.state.service
    return service


ServiceDep = Annotated[XnScoreService, Depends(get_service)]
