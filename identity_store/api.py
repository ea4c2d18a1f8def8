"""FastAPI application that exposes the identity store over HTTP."""
from __future__ import annotations

from datetime import datetime
from itertools import islice
from typing import Dict, List, Optional, Tuple, Type

from fastapi import FastAPI, Header, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import (
    AlreadyExistsError,
    IdentityStoreError,
    IntegrityViolationError,
    InvalidCredentialError,
    InvalidFilterError,
    InvalidRecordError,
    NotFoundError,
    OptimisticLockError,
    StorageError,
    UnsupportedFilterError,
    WeakCredentialError,
)
from .models import IdentityRecord, Name
from .store import IdentityStore


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NamePayload(_CamelModel):
    given_name: Optional[str] = Field(default=None, alias="givenName")
    family_name: Optional[str] = Field(default=None, alias="familyName")


class ValuePayload(_CamelModel):
    value: str = Field(..., min_length=1)


class MetaPayload(_CamelModel):
    version: int
    created: Optional[datetime]
    last_modified: Optional[datetime] = Field(alias="lastModified")


class UserPayload(_CamelModel):
    user_name: str = Field(..., min_length=1, max_length=255, alias="userName")
    name: NamePayload
    emails: List[ValuePayload] = Field(default_factory=list)
    phone_numbers: List[ValuePayload] = Field(default_factory=list, alias="phoneNumbers")
    active: bool = True

    @field_validator("user_name")
    @classmethod
    def _strip_user_name(cls, value: str) -> str:
        return value.strip()

    def to_record(self, *, version: int = 0) -> IdentityRecord:
        return IdentityRecord(
            user_name=self.user_name,
            name=Name(given_name=self.name.given_name, family_name=self.name.family_name),
            emails=tuple(item.value for item in self.emails),
            phone_numbers=tuple(item.value for item in self.phone_numbers),
            active=self.active,
            version=version,
        )


class CreateUserRequest(UserPayload):
    password: str


class UpdateUserRequest(UserPayload):
    version: int = Field(..., ge=0)


class ChangePasswordRequest(_CamelModel):
    old_password: Optional[str] = Field(default=None, alias="oldPassword")
    password: str


class UserResponse(_CamelModel):
    id: str
    user_name: str = Field(alias="userName")
    name: NamePayload
    emails: List[ValuePayload]
    phone_numbers: List[ValuePayload] = Field(alias="phoneNumbers")
    active: bool
    meta: MetaPayload


class UserListResponse(_CamelModel):
    total_results: int = Field(alias="totalResults")
    start_index: int = Field(alias="startIndex")
    items_per_page: int = Field(alias="itemsPerPage")
    resources: List[UserResponse]


class PasswordChangeResponse(BaseModel):
    status: str


_ERROR_STATUS: Dict[Type[IdentityStoreError], Tuple[int, str]] = {
    NotFoundError: (status.HTTP_404_NOT_FOUND, "not_found"),
    AlreadyExistsError: (status.HTTP_409_CONFLICT, "already_exists"),
    OptimisticLockError: (status.HTTP_409_CONFLICT, "version_mismatch"),
    InvalidRecordError: (status.HTTP_400_BAD_REQUEST, "invalid_user"),
    InvalidFilterError: (status.HTTP_400_BAD_REQUEST, "invalid_filter"),
    UnsupportedFilterError: (status.HTTP_400_BAD_REQUEST, "unsupported_filter"),
    WeakCredentialError: (status.HTTP_400_BAD_REQUEST, "invalid_password"),
    InvalidCredentialError: (status.HTTP_401_UNAUTHORIZED, "invalid_credentials"),
    IntegrityViolationError: (status.HTTP_500_INTERNAL_SERVER_ERROR, "integrity_violation"),
    StorageError: (status.HTTP_503_SERVICE_UNAVAILABLE, "storage_unavailable"),
}


def error_status(exc: IdentityStoreError) -> Tuple[int, str]:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error"


def user_to_response(user: IdentityRecord) -> UserResponse:
    return UserResponse(
        id=str(user.id),
        user_name=user.user_name,
        name=NamePayload(given_name=user.name.given_name, family_name=user.name.family_name),
        emails=[ValuePayload(value=email) for email in user.emails],
        phone_numbers=[ValuePayload(value=number) for number in user.phone_numbers],
        active=user.active,
        meta=MetaPayload(version=user.version, created=user.created, last_modified=user.last_modified),
    )


def parse_if_match(value: Optional[str]) -> int:
    """Translate an ``If-Match`` header into a version; ``*`` or no header skips the check."""

    if value is None:
        return -1
    cleaned = value.strip()
    if cleaned.startswith("W/"):
        cleaned = cleaned[2:]
    cleaned = cleaned.strip('"')
    if cleaned in {"", "*"}:
        return -1
    try:
        version = int(cleaned)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_version", "message": f"Invalid If-Match header: {value}"},
        ) from exc
    if version < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_version", "message": "Version must not be negative"},
        )
    return version


def create_app(*, store: IdentityStore) -> FastAPI:
    app = FastAPI(
        title="Identity Store",
        description="Create, query, update and remove user identity records",
        version="1.0.0",
    )
    app.state.store = store

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/Users", response_model=UserListResponse)
    async def list_users(
        filter_text: Optional[str] = Query(default=None, alias="filter"),
        sort_by: Optional[str] = Query(default=None, alias="sortBy"),
        sort_order: str = Query(default="ascending", alias="sortOrder", pattern="^(ascending|descending)$"),
        start_index: int = Query(default=1, ge=1, alias="startIndex"),
        count: int = Query(default=100, ge=0, le=1000),
    ) -> UserListResponse:
        if filter_text:
            results = store.search(filter_text, sort_by, sort_order == "ascending")
        else:
            results = store.list()
        offset = start_index - 1
        page = list(islice(iter(results), offset, offset + count))
        return UserListResponse(
            total_results=results.count(),
            start_index=start_index,
            items_per_page=len(page),
            resources=[user_to_response(user) for user in page],
        )

    @app.get("/Users/{user_id}", response_model=UserResponse)
    async def read_user(user_id: str, response: Response) -> UserResponse:
        user = store.retrieve(user_id)
        response.headers["ETag"] = f'"{user.version}"'
        return user_to_response(user)

    @app.post("/Users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
    async def create_user(payload: CreateUserRequest) -> UserResponse:
        created = store.create(payload.to_record(), payload.password)
        return user_to_response(created)

    @app.put("/Users/{user_id}", response_model=UserResponse)
    async def update_user(user_id: str, payload: UpdateUserRequest) -> UserResponse:
        updated = store.update(user_id, payload.to_record(version=payload.version))
        return user_to_response(updated)

    @app.put("/Users/{user_id}/password", response_model=PasswordChangeResponse)
    async def change_password(user_id: str, payload: ChangePasswordRequest) -> PasswordChangeResponse:
        store.change_password(user_id, payload.old_password, payload.password)
        return PasswordChangeResponse(status="ok")

    @app.delete("/Users/{user_id}", response_model=UserResponse)
    async def remove_user(user_id: str, if_match: Optional[str] = Header(default=None)) -> UserResponse:
        removed = store.remove(user_id, parse_if_match(if_match))
        return user_to_response(removed)

    @app.exception_handler(IdentityStoreError)
    async def handle_store_error(_: object, exc: IdentityStoreError):
        status_code, code = error_status(exc)
        detail: Dict[str, object] = {"code": code, "message": str(exc)}
        if isinstance(exc, OptimisticLockError):
            detail["submitted"] = exc.submitted
            detail["found"] = exc.found
        return JSONResponse(status_code=status_code, content={"detail": detail})

    return app


__all__ = ["create_app", "error_status", "parse_if_match", "user_to_response"]
