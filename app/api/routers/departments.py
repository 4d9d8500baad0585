from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.api.deps import AdminArea, Pagination, result_response
from app.domain.models import DepartmentChanges, DepartmentCreate, DepartmentFilters, DepartmentUpdate
from app.services.department_service import DepartmentService

router = APIRouter(dependencies=[AdminArea])


def get_department_service() -> DepartmentService:
    return DepartmentService()


Service = Annotated[DepartmentService, Depends(get_department_service)]


@router.post("")
def create_department(payload: DepartmentCreate, service: Service) -> JSONResponse:
    return result_response(service.create_department(payload), success_status=status.HTTP_201_CREATED)


@router.get("")
def list_departments(
    service: Service,
    pagination: Pagination,
    search: str | None = None,
    parent_id: str | None = None,
    roots_only: bool = False,
) -> JSONResponse:
    filters = DepartmentFilters(search=search, parent_id=parent_id, roots_only=roots_only)
    return result_response(service.list_departments(filters, pagination))


@router.get("/hierarchy")
def get_hierarchy(service: Service) -> JSONResponse:
    return result_response(service.get_hierarchy())


@router.get("/{department_id}")
def get_department(department_id: str, service: Service) -> JSONResponse:
    return result_response(service.get_department(department_id))


@router.patch("/{department_id}")
def update_department(department_id: str, payload: DepartmentChanges, service: Service) -> JSONResponse:
    update = DepartmentUpdate(id=department_id, **payload.model_dump(exclude_unset=True))
    return result_response(service.update_department(update))


@router.delete("/{department_id}")
def delete_department(department_id: str, service: Service) -> JSONResponse:
    return result_response(service.delete_department(department_id))
