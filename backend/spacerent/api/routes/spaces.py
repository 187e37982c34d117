"""
Read-only REST view of the space layout (public fields only).
"""
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from spacerent.core.errors import SPACE_NOT_FOUND, message_for
from spacerent.services.rental_service import RentalService

router = APIRouter()


def get_rental_service(request: Request) -> RentalService:
    return request.app.state.rental_service


@router.get("/spaces")
def list_spaces(service: RentalService = Depends(get_rental_service)) -> dict[str, Any]:
    return {"spaces": service.list_spaces()}


@router.get("/spaces/{space_id}")
def get_space(space_id: str, service: RentalService = Depends(get_rental_service)) -> dict[str, Any]:
    space = service.get_space(space_id)
    if space is None:
        raise HTTPException(status_code=404, detail={"error": SPACE_NOT_FOUND, "message": message_for(SPACE_NOT_FOUND)})
    return {"space": space}
