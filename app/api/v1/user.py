from typing import List
from fastapi import APIRouter, Depends, status

from app.core.dependencies import get_user_service, get_current_user
from app.db.schema import User
from app.models.user import UserCreate, UserRead, CompanyCreate, CompanyRead
from app.services.user import UserService

router = APIRouter()


@router.get(
    "/",
    response_model=List[UserRead],
    summary="List users",
    tags=["Users"]
)
def list_users(
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service)
):
    return service.list_users(current_user)


@router.post(
    "/",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Provision a user",
    tags=["Users"]
)
def create_user(
    payload: UserCreate,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service)
):
    """
    Admin only. Creates a user with the given roles inside an existing company.
    """
    return service.create_user(payload, acting_user=current_user)


@router.post(
    "/companies",
    response_model=CompanyRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a company",
    tags=["Users"]
)
def create_company(
    payload: CompanyCreate,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service)
):
    return service.create_company(payload, acting_user=current_user)
