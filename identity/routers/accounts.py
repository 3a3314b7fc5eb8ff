from fastapi import APIRouter, Depends, Header, HTTPException, status

from identity.errors import ErrorCode, ServiceError
from identity.routers.auth import raise_for, to_account_response
from identity.schemas.accounts import AccountResponse, ChangePasswordRequest
from identity.schemas.tokens import MessageResponse
from identity.services.accounts import account_service
from identity.services.sessions import session_store
from identity.services.tokens import TokenError, decode_access_token

router = APIRouter(prefix="/accounts", tags=["accounts"])


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": ErrorCode.INVALID_TOKEN.value, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_account_id(authorization: str | None = Header(default=None)) -> int:
    if not authorization:
        raise _unauthorized("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Invalid Authorization header")
    try:
        access_data = decode_access_token(token)
    except TokenError as exc:
        raise _unauthorized(str(exc)) from exc
    account_id = session_store.get_account_id(access_data.session_id)
    if account_id is None or account_id != access_data.account_id:
        raise _unauthorized("Invalid session token")
    return access_data.account_id


@router.get("/me", response_model=AccountResponse)
def get_me(account_id: int = Depends(get_current_account_id)) -> AccountResponse:
    account = account_service.get_account(account_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": ErrorCode.ACCOUNT_NOT_FOUND.value, "message": "Account not found"},
        )
    return to_account_response(account)


@router.post("/me/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest, account_id: int = Depends(get_current_account_id)
) -> MessageResponse:
    error = account_service.change_password(
        account_id,
        payload.current_password,
        payload.new_password,
        payload.confirm_password,
    )
    if isinstance(error, ServiceError):
        raise_for(error)
    return MessageResponse(message="Password changed")
