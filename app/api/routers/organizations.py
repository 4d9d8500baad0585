from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.api.deps import ActorId, AdminArea, Pagination, get_current_claims, result_response
from app.domain.models import (
    AddMemberRequest,
    InvitationCreate,
    InvitationReply,
    InviteMemberRequest,
    MemberCreate,
    MemberRoleUpdate,
    OrganizationChanges,
    OrganizationCreate,
    OrganizationFilters,
    OrganizationUpdate,
    OwnershipTransferRequest,
)
from app.services.organization_service import OrganizationService

router = APIRouter(dependencies=[Depends(get_current_claims)])


def get_organization_service() -> OrganizationService:
    return OrganizationService()


Service = Annotated[OrganizationService, Depends(get_organization_service)]


@router.post("", dependencies=[AdminArea])
def create_organization(payload: OrganizationCreate, actor_id: ActorId, service: Service) -> JSONResponse:
    result = service.create_organization(payload, owner_id=actor_id)
    return result_response(result, success_status=status.HTTP_201_CREATED)


@router.get("", dependencies=[AdminArea])
def list_organizations(
    service: Service,
    pagination: Pagination,
    search: str | None = None,
) -> JSONResponse:
    return result_response(service.list_organizations(OrganizationFilters(search=search), pagination))


@router.post("/invitations/{invitation_id}/respond")
def respond_to_invitation(
    invitation_id: str,
    payload: InvitationReply,
    actor_id: ActorId,
    service: Service,
) -> JSONResponse:
    return result_response(service.respond_to_invitation(invitation_id, actor_id, payload.accept))


@router.get("/{organization_id}", dependencies=[AdminArea])
def get_organization(organization_id: str, service: Service) -> JSONResponse:
    return result_response(service.get_organization(organization_id))


@router.patch("/{organization_id}", dependencies=[AdminArea])
def update_organization(
    organization_id: str,
    payload: OrganizationChanges,
    actor_id: ActorId,
    service: Service,
) -> JSONResponse:
    update = OrganizationUpdate(id=organization_id, **payload.model_dump(exclude_unset=True))
    return result_response(service.update_organization(update, requester_id=actor_id))


@router.delete("/{organization_id}", dependencies=[AdminArea])
def delete_organization(organization_id: str, actor_id: ActorId, service: Service) -> JSONResponse:
    return result_response(service.delete_organization(organization_id, requester_id=actor_id))


@router.post("/{organization_id}/members", dependencies=[AdminArea])
def add_member(
    organization_id: str,
    payload: MemberCreate,
    actor_id: ActorId,
    service: Service,
) -> JSONResponse:
    request = AddMemberRequest(organization_id=organization_id, **payload.model_dump())
    result = service.add_member(request, requester_id=actor_id)
    return result_response(result, success_status=status.HTTP_201_CREATED)


@router.patch("/{organization_id}/members/{user_id}", dependencies=[AdminArea])
def update_member_role(
    organization_id: str,
    user_id: str,
    payload: MemberRoleUpdate,
    actor_id: ActorId,
    service: Service,
) -> JSONResponse:
    result = service.update_member_role(organization_id, user_id, payload.role, requester_id=actor_id)
    return result_response(result)


@router.delete("/{organization_id}/members/{user_id}", dependencies=[AdminArea])
def remove_member(organization_id: str, user_id: str, actor_id: ActorId, service: Service) -> JSONResponse:
    return result_response(service.remove_member(organization_id, user_id, requester_id=actor_id))


@router.post("/{organization_id}/ownership", dependencies=[AdminArea])
def transfer_ownership(
    organization_id: str,
    payload: OwnershipTransferRequest,
    actor_id: ActorId,
    service: Service,
) -> JSONResponse:
    result = service.transfer_ownership(organization_id, payload.new_owner_id, requester_id=actor_id)
    return result_response(result)


@router.post("/{organization_id}/invitations", dependencies=[AdminArea])
def invite_member(
    organization_id: str,
    payload: InvitationCreate,
    actor_id: ActorId,
    service: Service,
) -> JSONResponse:
    request = InviteMemberRequest(
        organization_id=organization_id,
        email=payload.email,
        role=payload.role,
        inviter_id=actor_id,
    )
    return result_response(service.invite_member(request), success_status=status.HTTP_201_CREATED)
