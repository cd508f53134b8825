"""Microsoft Graph helper utilities for directory administration."""
from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import requests

if TYPE_CHECKING:
    from .session import SessionManager


GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
REQUEST_TIMEOUT = 30
USER_SELECT = "id,displayName,userPrincipalName,mailNickname,jobTitle,department,accountEnabled"
_TOKEN_ERROR_CODES = {
    "invalidauthenticationtoken",
    "authenticationerror",
    "tokenexpired",
    "expiredauthenticationtoken",
    "unauthenticated",
}
_NOT_FOUND_CODES = {"request_resourcenotfound", "resourcenotfound", "itemnotfound"}

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    AUTHORIZATION_EXPIRED = "authorization_expired"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    THROTTLED = "throttled"
    REMOTE = "remote"


class GraphClientError(RuntimeError):
    """Base exception for Microsoft Graph client operations."""

    kind = ErrorKind.REMOTE


class SessionExpiredError(GraphClientError):
    """Raised when no usable access token is available for the session."""

    kind = ErrorKind.AUTHORIZATION_EXPIRED


class GraphError(GraphClientError):
    """Raised when the Microsoft Graph API returns an error."""

    def __init__(self, status_code: int, error: str, description: str) -> None:
        super().__init__(f"{status_code}: {error} - {description}")
        self.status_code = status_code
        self.error = error
        self.description = description
        self.kind = classify_error(status_code, error)


def classify_error(status_code: int, error: str) -> ErrorKind:
    code = (error or "").lower()
    if status_code == 401 or code in _TOKEN_ERROR_CODES:
        return ErrorKind.AUTHORIZATION_EXPIRED
    if status_code == 404 or code in _NOT_FOUND_CODES:
        return ErrorKind.NOT_FOUND
    if status_code == 403:
        return ErrorKind.FORBIDDEN
    if status_code == 429:
        return ErrorKind.THROTTLED
    return ErrorKind.REMOTE


def _escape(value: str) -> str:
    return value.replace("'", "''")


class GraphClient:
    """Lightweight Microsoft Graph client bound to the console session."""

    def __init__(
        self,
        session: "SessionManager",
        http: Optional[requests.Session] = None,
        timeout: int = REQUEST_TIMEOUT,
    ) -> None:
        self._session = session
        self._http = http or requests.Session()
        self._timeout = timeout

    # ------------------------------------------------------------------ #
    # HTTP helpers                                                       #
    # ------------------------------------------------------------------ #
    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            return self._send(method, path, **kwargs)
        except GraphClientError as exc:
            if exc.kind is ErrorKind.AUTHORIZATION_EXPIRED:
                self._session.invalidate()
            raise

    def _send(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = path if path.startswith("https://") else GRAPH_BASE_URL + path
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("Authorization", f"Bearer {self._session.access_token()}")
        headers.setdefault("Accept", "application/json")
        if "json" in kwargs:
            headers.setdefault("Content-Type", "application/json")

        logger.debug("Graph request: %s %s", method, path)
        try:
            response = self._http.request(
                method,
                url,
                timeout=self._timeout,
                headers=headers,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise GraphError(0, "NetworkError", str(exc)) from exc

        if response.status_code == 204:
            return {}

        if response.status_code >= 400:
            try:
                payload = response.json()
                error = payload.get("error", {})
                code = error.get("code", "GraphError")
                message = error.get("message", response.text)
            except ValueError:
                code = "GraphError"
                message = response.text or "Unknown Graph error."
            raise GraphError(response.status_code, code, message)

        if not response.content:
            return {}
        return response.json()

    def _get_all(self, path: str, params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """GET every page of a collection, following ``@odata.nextLink``."""
        result = self._request("GET", path, params=params)
        values = list(result.get("value", []))
        next_link = result.get("@odata.nextLink")
        while next_link:
            result = self._request("GET", next_link)
            values.extend(result.get("value", []))
            next_link = result.get("@odata.nextLink")
        return values

    # ------------------------------------------------------------------ #
    # Users                                                              #
    # ------------------------------------------------------------------ #
    def search_users(self, filter_expression: str, top: int, advanced: bool = False) -> List[Dict[str, Any]]:
        params = {"$filter": filter_expression, "$select": USER_SELECT, "$top": str(top)}
        headers = {}
        if advanced:
            # endswith() is only served by the eventually consistent index.
            params["$count"] = "true"
            headers["ConsistencyLevel"] = "eventual"
        result = self._request("GET", "/users", params=params, headers=headers)
        return result.get("value", [])

    def list_users(self, top: int) -> List[Dict[str, Any]]:
        result = self._request("GET", "/users", params={"$select": USER_SELECT, "$top": str(top)})
        return result.get("value", [])

    def find_user_by_principal_name(self, principal_name: str) -> Optional[Dict[str, Any]]:
        cleaned = (principal_name or "").strip()
        if not cleaned:
            return None
        values = self.search_users(f"userPrincipalName eq '{_escape(cleaned)}'", top=1)
        return values[0] if values else None

    def get_user(self, user_id: str, select: str = USER_SELECT) -> Dict[str, Any]:
        return self._request("GET", f"/users/{user_id}", params={"$select": select})

    def create_user(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/users", json=payload)

    def update_user(self, user_id: str, **fields: Any) -> Dict[str, Any]:
        payload = {key: value for key, value in fields.items() if value is not None}
        if not payload:
            return {}
        return self._request("PATCH", f"/users/{user_id}", json=payload)

    # ------------------------------------------------------------------ #
    # Licenses                                                           #
    # ------------------------------------------------------------------ #
    def list_subscribed_skus(self) -> List[Dict[str, Any]]:
        result = self._request(
            "GET",
            "/subscribedSkus",
            params={"$select": "skuId,skuPartNumber,prepaidUnits,consumedUnits"},
        )
        return result.get("value", [])

    def get_user_license_details(self, user_id: str) -> List[Dict[str, Any]]:
        return self._get_all(f"/users/{user_id}/licenseDetails")

    def add_license(self, user_id: str, sku_id: str) -> Dict[str, Any]:
        payload = {"addLicenses": [{"skuId": sku_id, "disabledPlans": []}], "removeLicenses": []}
        return self._request("POST", f"/users/{user_id}/assignLicense", json=payload)

    def remove_license(self, user_id: str, sku_id: str) -> Dict[str, Any]:
        payload = {"addLicenses": [], "removeLicenses": [sku_id]}
        return self._request("POST", f"/users/{user_id}/assignLicense", json=payload)

    # ------------------------------------------------------------------ #
    # Groups                                                             #
    # ------------------------------------------------------------------ #
    def get_group(self, group_id: str) -> Dict[str, Any]:
        """Get group details by ID."""
        return self._request(
            "GET",
            f"/groups/{group_id}",
            params={"$select": "id,displayName,mailNickname,description,groupTypes"},
        )

    def add_user_to_group(self, user_id: str, group_id: str) -> None:
        payload = {"@odata.id": f"{GRAPH_BASE_URL}/directoryObjects/{user_id}"}
        self._request("POST", f"/groups/{group_id}/members/$ref", json=payload)

    def remove_user_from_group(self, user_id: str, group_id: str) -> None:
        self._request("DELETE", f"/groups/{group_id}/members/{user_id}/$ref")

    def get_user_groups(self, user_id: str) -> List[Dict[str, Any]]:
        """Get the groups the user is a direct member of."""
        return self._get_all(
            f"/users/{user_id}/memberOf/microsoft.graph.group", params={"$select": "id,displayName"}
        )

    # ------------------------------------------------------------------ #
    # Directory roles                                                    #
    # ------------------------------------------------------------------ #
    def list_directory_roles(self) -> List[Dict[str, Any]]:
        return self._get_all("/directoryRoles", params={"$select": "id,displayName,description"})

    def add_directory_role_member(self, role_id: str, user_id: str) -> None:
        payload = {"@odata.id": f"{GRAPH_BASE_URL}/directoryObjects/{user_id}"}
        self._request("POST", f"/directoryRoles/{role_id}/members/$ref", json=payload)

    # ------------------------------------------------------------------ #
    # Authentication methods                                             #
    # ------------------------------------------------------------------ #
    def list_authentication_methods(self, user_id: str) -> List[Dict[str, Any]]:
        return self._get_all(f"/users/{user_id}/authentication/methods")

    def delete_authentication_method(self, user_id: str, endpoint: str, method_id: str) -> None:
        self._request("DELETE", f"/users/{user_id}/authentication/{endpoint}/{method_id}")


__all__ = [
    "ErrorKind",
    "GraphClient",
    "GraphClientError",
    "GraphError",
    "SessionExpiredError",
    "classify_error",
]
