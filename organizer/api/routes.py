"""
Per-user CRUD endpoints. Every query is scoped by the principal's user id; another user's
record id behaves exactly like a missing one.
"""
from typing import Any, Dict, List, Type

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from organizer.api.schemas import (
    ContactCreate,
    ContactUpdate,
    NoteCreate,
    NoteUpdate,
    ProfileUpdate,
    ReminderCreate,
    ReminderUpdate,
)
from organizer.api.services import Services, get_services
from organizer.auth.deps import require_principal
from organizer.auth.models import Principal
from organizer.auth.session import clear_session_cookie_kwargs

router = APIRouter(prefix="/api", tags=["api"])


def _current_user(principal: Principal, services: Services):
    user = services.backends.users.get_by_id(principal.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/profile")
def get_profile(principal: Principal = Depends(require_principal), services: Services = Depends(get_services)):
    return _current_user(principal, services).to_public_dict()


@router.put("/profile")
def update_profile(
    body: ProfileUpdate,
    principal: Principal = Depends(require_principal),
    services: Services = Depends(get_services),
):
    # Upstream values overwrite these again on the next login.
    user = _current_user(principal, services)
    display_name = (body.display_name or "").strip() or user.display_name
    photo_url = body.photo_url if "photo_url" in body.model_fields_set else user.photo_url
    updated = services.backends.users.update_profile(
        user.id, display_name=display_name, email=user.email, photo_url=photo_url
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="User not found")
    return updated.to_public_dict()


@router.delete("/profile")
def delete_profile(principal: Principal = Depends(require_principal), services: Services = Depends(get_services)):
    """Delete the account; sessions, notes, reminders and contacts cascade."""
    if not services.backends.users.delete(principal.user_id):
        raise HTTPException(status_code=404, detail="User not found")
    resp = JSONResponse(content={"ok": True})
    resp.set_cookie(**clear_session_cookie_kwargs(services.settings))
    return resp


def _record_router(kind: str, create_model: Type[BaseModel], update_model: Type[BaseModel]) -> APIRouter:
    r = APIRouter(prefix=f"/{kind}")

    @r.get("")
    def list_records(
        principal: Principal = Depends(require_principal), services: Services = Depends(get_services)
    ) -> List[Dict[str, Any]]:
        return services.records(kind).list(principal.user_id)

    @r.post("", status_code=201)
    def create_record(
        body: create_model,  # type: ignore[valid-type]
        principal: Principal = Depends(require_principal),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        return services.records(kind).create(principal.user_id, body.model_dump())

    @r.get("/{record_id}")
    def get_record(
        record_id: int,
        principal: Principal = Depends(require_principal),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        row = services.records(kind).get(principal.user_id, record_id)
        if row is None:
            raise HTTPException(status_code=404, detail="Not found")
        return row

    @r.put("/{record_id}")
    def update_record(
        record_id: int,
        body: update_model,  # type: ignore[valid-type]
        principal: Principal = Depends(require_principal),
        services: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        repo = services.records(kind)
        values = body.model_dump(exclude_unset=True)
        # NOT NULL columns can be changed but not cleared.
        values = {k: v for k, v in values.items() if not (v is None and k in repo.table.not_null)}
        row = repo.update(principal.user_id, record_id, values)
        if row is None:
            raise HTTPException(status_code=404, detail="Not found")
        return row

    @r.delete("/{record_id}", status_code=204)
    def delete_record(
        record_id: int,
        principal: Principal = Depends(require_principal),
        services: Services = Depends(get_services),
    ) -> Response:
        if not services.records(kind).delete(principal.user_id, record_id):
            raise HTTPException(status_code=404, detail="Not found")
        return Response(status_code=204)

    return r


router.include_router(_record_router("notes", NoteCreate, NoteUpdate))
router.include_router(_record_router("reminders", ReminderCreate, ReminderUpdate))
router.include_router(_record_router("contacts", ContactCreate, ContactUpdate))
