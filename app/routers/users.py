from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.db import get_db
from app.schemas import DeleteResponse, UserCreateRequest, UserRead, UserRoleUpdateRequest
from app.security import require_admin
from app.services.users import create_user, delete_user, list_users, update_user_role

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=list[UserRead], dependencies=[Depends(require_admin)])
def get_users(db: Session = Depends(get_db)) -> list[UserRead]:
    return list_users(db)


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def post_user(
    payload: UserCreateRequest,
    request: Request,
    _actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> UserRead:
    user = create_user(db, payload)
    audit_request(
        request,
        db,
        action="USER_CREATED",
        entity_type="user",
        entity_id=user.id,
        details={"username": user.username, "role": user.role.value},
    )
    return user


@router.put("/{user_id}/role", response_model=UserRead)
def put_user_role(
    user_id: int,
    payload: UserRoleUpdateRequest,
    request: Request,
    _actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> UserRead:
    user = update_user_role(db, user_id, payload.role)
    audit_request(
        request,
        db,
        action="USER_ROLE_UPDATED",
        entity_type="user",
        entity_id=user.id,
        details={"username": user.username, "role": user.role.value},
    )
    return user


@router.delete("/{user_id}", response_model=DeleteResponse)
def remove_user(
    user_id: int,
    request: Request,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    username = delete_user(db, user_id, actor=actor)
    audit_request(
        request,
        db,
        action="USER_DELETED",
        entity_type="user",
        entity_id=user_id,
        details={"username": username},
    )
    return DeleteResponse(id=user_id)
