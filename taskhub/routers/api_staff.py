from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth import get_current_staff_api
from ..crud import list_visible_staff
from ..db import get_db
from ..errors import VisibilityLookupFailed
from ..permissions import Actor
from ..schemas import StaffOut


router = APIRouter()


@router.get("/", response_model=list[StaffOut])
def api_list_staff(
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    try:
        return list_visible_staff(db, actor=Actor.from_staff(current_staff))
    except VisibilityLookupFailed as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/me", response_model=StaffOut)
def api_me(current_staff=Depends(get_current_staff_api)):
    return current_staff
