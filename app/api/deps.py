from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any, Literal

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer

from app.domain.models import PaginationParams, UserRole
from app.domain.permissions import ADMIN_AREA_ROLES, has_user_role
from app.domain.results import INFRASTRUCTURE_CODES, ActionResult, ErrorCode
from app.infra.auth import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/dev-login")

INPUT_CODES = frozenset(
    {
        ErrorCode.REQUIRED_NAME,
        ErrorCode.REQUIRED_EMAIL,
        ErrorCode.REQUIRED_PASSWORD,
        ErrorCode.REQUIRED_SLUG,
        ErrorCode.INVALID_EMAIL,
        ErrorCode.INVALID_SLUG,
        ErrorCode.PASSWORD_TOO_SHORT,
        ErrorCode.PASSWORD_WEAK,
    }
)

STATUS_BY_CODE: dict[str, int] = {
    **{code.value: status.HTTP_422_UNPROCESSABLE_ENTITY for code in INPUT_CODES},
    **{code.value: status.HTTP_500_INTERNAL_SERVER_ERROR for code in INFRASTRUCTURE_CODES},
    ErrorCode.NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorCode.PARENT_NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorCode.MEMBER_NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorCode.INSUFFICIENT_PERMISSIONS.value: status.HTTP_403_FORBIDDEN,
}


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def require_role(*roles: UserRole) -> Callable[[dict[str, Any]], dict[str, Any]]:
    allowed = frozenset(roles)

    def _checker(
        claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    ) -> dict[str, Any]:
        if not has_user_role(claims, allowed):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of roles: {', '.join(sorted(allowed))}",
            )
        return claims

    return _checker


def get_actor_id(
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
) -> str:
    return str(claims["sub"])


def get_pagination(
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 10,
    sort_by: str | None = None,
    sort_order: Literal["asc", "desc"] | None = None,
) -> PaginationParams:
    return PaginationParams(page=page, page_size=page_size, sort_by=sort_by, sort_order=sort_order)


def result_response(
    result: ActionResult[Any],
    *,
    success_status: int = status.HTTP_200_OK,
) -> JSONResponse:
    if result.success:
        status_code = success_status
    else:
        # Anything not listed is a conflict or a protected invariant.
        status_code = STATUS_BY_CODE.get(result.code or "", status.HTTP_409_CONFLICT)
    body = result.model_dump(mode="json")
    content = {key: value for key, value in body.items() if key == "success" or value is not None}
    return JSONResponse(status_code=status_code, content=content)


ActorId = Annotated[str, Depends(get_actor_id)]
Pagination = Annotated[PaginationParams, Depends(get_pagination)]
AdminArea = Depends(require_role(*ADMIN_AREA_ROLES))
