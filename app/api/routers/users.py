from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from app.api.deps import AdminArea, Pagination, result_response
from app.domain.models import (
    UserBanRequest,
    UserChanges,
    UserCreate,
    UserFilters,
    UserRole,
    UserStatus,
    UserStatusUpdate,
    UserUpdate,
)
from app.services.user_service import UserService

router = APIRouter(dependencies=[AdminArea])


def get_user_service() -> UserService:
    return UserService()


Service = Annotated[UserService, Depends(get_user_service)]


@router.post("")
def create_user(payload: UserCreate, service: Service) -> JSONResponse:
    return result_response(service.create_user(payload), success_status=status.HTTP_201_CREATED)


@router.get("")
def list_users(
    service: Service,
    pagination: Pagination,
    search: str | None = None,
    role: UserRole | None = None,
    status_filter: Annotated[UserStatus | None, Query(alias="status")] = None,
    department_id: str | None = None,
    manager_id: str | None = None,
) -> JSONResponse:
    filters = UserFilters(
        search=search,
        role=role,
        status=status_filter,
        department_id=department_id,
        manager_id=manager_id,
    )
    return result_response(service.list_users(filters, pagination))


@router.get("/managers")
def list_managers(service: Service) -> JSONResponse:
    return result_response(service.list_managers())


@router.get("/{user_id}")
def get_user(user_id: str, service: Service) -> JSONResponse:
    return result_response(service.get_user(user_id))


@router.patch("/{user_id}")
def update_user(user_id: str, payload: UserChanges, service: Service) -> JSONResponse:
    update = UserUpdate(id=user_id, **payload.model_dump(exclude_unset=True))
    return result_response(service.update_user(update))


@router.delete("/{user_id}")
def delete_user(user_id: str, service: Service) -> JSONResponse:
    return result_response(service.delete_user(user_id))


@router.patch("/{user_id}/status")
def update_user_status(user_id: str, payload: UserStatusUpdate, service: Service) -> JSONResponse:
    return result_response(service.update_user_status(user_id, payload.status))


@router.post("/{user_id}/ban")
def ban_user(user_id: str, payload: UserBanRequest, service: Service) -> JSONResponse:
    return result_response(service.ban_user(user_id, payload.reason, payload.expires_at))


@router.post("/{user_id}/unban")
def unban_user(user_id: str, service: Service) -> JSONResponse:
    return result_response(service.unban_user(user_id))
