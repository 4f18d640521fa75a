"""
Auth service collaborators

Identity verification, wallet balance and order notification all live on
the auth service. Each client binds the caller's Authorization header and
shares one httpx.Client.
"""
from typing import Optional

import httpx
import structlog

from errors import AuthError, AuthUnavailableError, CollaboratorError, errmsg
from schemas import AuthUser

logger = structlog.get_logger(__name__)


def _remote_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return default


class AuthServiceClient:
    """Base for calls to the auth service on behalf of one caller."""

    def __init__(self, http: httpx.Client, authorization: Optional[str] = None):
        self.http = http
        self.authorization = authorization

    def _headers(self) -> dict:
        return {"Authorization": self.authorization} if self.authorization else {}

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.http.request(method, path, headers=self._headers(), **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CollaboratorError(_remote_message(e.response, str(e))) from e
        except httpx.HTTPError as e:
            raise CollaboratorError(str(e) or e.__class__.__name__) from e
        try:
            return response.json()
        except ValueError:
            return {}


class RemoteIdentityVerifier:
    def __init__(self, http: httpx.Client):
        self.http = http

    def verify(self, authorization: Optional[str]) -> AuthUser:
        if not authorization:
            raise AuthError(errmsg.AUTH_MISSING)
        try:
            response = self.http.get("/verify", headers={"Authorization": authorization})
        except httpx.HTTPError as e:
            logger.warning("auth_service_unreachable", error=str(e))
            raise AuthUnavailableError() from e

        if response.status_code >= 500:
            logger.warning("auth_service_error", status=response.status_code)
            raise AuthUnavailableError()
        if response.status_code >= 400:
            raise AuthError(_remote_message(response, errmsg.AUTH_FAILED))

        try:
            data = response.json()
        except ValueError as e:
            raise AuthUnavailableError() from e
        if not data.get("valid"):
            raise AuthError("Invalid token")
        return AuthUser(user_id=str(data["userId"]), email=data.get("email"))


class DevTokenVerifier:
    """Accepts 'Bearer test-user-<id>' tokens without calling the auth service."""

    prefix = "test-user-"

    def verify(self, authorization: Optional[str]) -> AuthUser:
        if not authorization:
            raise AuthError(errmsg.AUTH_MISSING)
        parts = authorization.split(" ")
        if len(parts) != 2 or parts[0] != "Bearer":
            raise AuthError("Invalid authorization header format")
        token = parts[1]
        if not token.startswith(self.prefix) or len(token) == len(self.prefix):
            raise AuthError("Invalid token")
        user_id = token[len(self.prefix):]
        return AuthUser(user_id=user_id, email=f"{user_id}@test.com")


class WalletClient(AuthServiceClient):
    def get_balance(self, user_id: str) -> float:
        data = self._request("GET", "/profile")
        try:
            return float(data["user"]["walletBalance"])
        except (KeyError, TypeError, ValueError) as e:
            raise CollaboratorError("Wallet balance unavailable") from e

    def deduct(self, user_id: str, amount: float) -> None:
        self._request("POST", "/deduct-balance", json={"amount": amount})
        logger.info("wallet_debited", user_id=user_id, amount=amount)


class OrderNotifier(AuthServiceClient):
    def notify(self, transaction_id: str, amount: float) -> None:
        self._request("POST", "/notify-order", json={"transactionId": transaction_id, "amount": amount})
