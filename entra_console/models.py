"""Data models for directory users, licenses and authentication methods."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


GRAPH_TYPE_PREFIX = "#microsoft.graph."


@dataclass(frozen=True)
class DirectoryUser:
    """Request-scoped copy of a directory user record."""

    id: str
    user_principal_name: str
    display_name: str = ""
    mail_nickname: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    account_enabled: Optional[bool] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "DirectoryUser":
        return cls(
            id=str(data["id"]),
            user_principal_name=str(data.get("userPrincipalName") or ""),
            display_name=str(data.get("displayName") or ""),
            mail_nickname=data.get("mailNickname"),
            job_title=data.get("jobTitle"),
            department=data.get("department"),
            account_enabled=data.get("accountEnabled"),
        )

    @property
    def label(self) -> str:
        if self.display_name:
            return f"{self.display_name} <{self.user_principal_name}>"
        return self.user_principal_name


@dataclass(frozen=True)
class LicenseSku:
    """A subscribed license SKU and its seat counts."""

    sku_id: str
    sku_part_number: str
    prepaid_units: int = 0
    consumed_units: int = 0

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "LicenseSku":
        prepaid = data.get("prepaidUnits") or {}
        return cls(
            sku_id=str(data.get("skuId") or ""),
            sku_part_number=str(data.get("skuPartNumber") or data.get("skuId") or ""),
            prepaid_units=int(prepaid.get("enabled") or 0),
            consumed_units=int(data.get("consumedUnits") or 0),
        )

    @property
    def available_units(self) -> int:
        return self.prepaid_units - self.consumed_units

    @property
    def has_available_seats(self) -> bool:
        return self.available_units > 0


@dataclass(frozen=True)
class AssignedLicense:
    """A license currently assigned to a user, with its service plan states."""

    sku_id: str
    sku_part_number: str
    enabled_service_plans: List[str] = field(default_factory=list)
    disabled_service_plans: List[str] = field(default_factory=list)

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "AssignedLicense":
        enabled: List[str] = []
        disabled: List[str] = []
        for plan in data.get("servicePlans") or []:
            name = str(plan.get("servicePlanName") or plan.get("servicePlanId") or "")
            if not name:
                continue
            if str(plan.get("provisioningStatus") or "").lower() == "disabled":
                disabled.append(name)
            else:
                enabled.append(name)
        return cls(
            sku_id=str(data.get("skuId") or ""),
            sku_part_number=str(data.get("skuPartNumber") or data.get("skuId") or ""),
            enabled_service_plans=enabled,
            disabled_service_plans=disabled,
        )


class MethodType(Enum):
    """Closed set of authentication method kinds, keyed by Graph ``@odata.type``."""

    AUTHENTICATOR_APP = ("microsoftAuthenticatorAuthenticationMethod", "Authenticator app", "microsoftAuthenticatorMethods")
    PHONE = ("phoneAuthenticationMethod", "Phone", "phoneMethods")
    EMAIL = ("emailAuthenticationMethod", "Email", "emailMethods")
    FIDO2 = ("fido2AuthenticationMethod", "FIDO2 security key", "fido2Methods")
    WINDOWS_HELLO = (
        "windowsHelloForBusinessAuthenticationMethod",
        "Windows Hello for Business",
        "windowsHelloForBusinessMethods",
    )
    PASSWORD = ("passwordAuthenticationMethod", "Password", None)
    TEMPORARY_ACCESS_PASS = (
        "temporaryAccessPassAuthenticationMethod",
        "Temporary Access Pass",
        "temporaryAccessPassMethods",
    )
    OTHER = ("", "Other", None)

    def __init__(self, discriminator: str, display_name: str, endpoint: Optional[str]) -> None:
        self.discriminator = discriminator
        self.display_name = display_name
        self.endpoint = endpoint

    @classmethod
    def from_discriminator(cls, raw: Optional[str]) -> "MethodType":
        name = str(raw or "")
        if name.startswith(GRAPH_TYPE_PREFIX):
            name = name[len(GRAPH_TYPE_PREFIX) :]
        for member in cls:
            if member.discriminator and member.discriminator == name:
                return member
        return cls.OTHER


@dataclass(frozen=True)
class AuthenticationMethod:
    """A configured authentication method of a single user."""

    id: str
    method_type: MethodType
    raw_type: str = ""
    phone_number: Optional[str] = None
    phone_type: Optional[str] = None
    email_address: Optional[str] = None
    model: Optional[str] = None
    device_name: Optional[str] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "AuthenticationMethod":
        raw_type = str(data.get("@odata.type") or "")
        return cls(
            id=str(data.get("id") or ""),
            method_type=MethodType.from_discriminator(raw_type),
            raw_type=raw_type,
            phone_number=data.get("phoneNumber"),
            phone_type=data.get("phoneType"),
            email_address=data.get("emailAddress"),
            model=data.get("model"),
            device_name=data.get("displayName"),
        )

    @property
    def is_password(self) -> bool:
        return self.method_type is MethodType.PASSWORD

    @property
    def removable(self) -> bool:
        return self.method_type.endpoint is not None

    @property
    def label(self) -> str:
        if self.method_type is MethodType.OTHER:
            raw = self.raw_type[len(GRAPH_TYPE_PREFIX) :] if self.raw_type.startswith(GRAPH_TYPE_PREFIX) else self.raw_type
            return f"Other ({raw or 'unknown'})"
        return self.method_type.display_name

    @property
    def description(self) -> str:
        if self.method_type is MethodType.PHONE:
            details = [self.phone_number, f"({self.phone_type})" if self.phone_type else None]
        elif self.method_type is MethodType.EMAIL:
            details = [self.email_address]
        elif self.method_type is MethodType.FIDO2:
            details = [self.device_name, f"[{self.model}]" if self.model else None]
        else:
            details = [self.device_name]
        detail = " ".join(part for part in details if part)
        return f"{self.label}: {detail}" if detail else self.label


@dataclass(frozen=True)
class DirectoryRole:
    id: str
    display_name: str
    description: Optional[str] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "DirectoryRole":
        return cls(
            id=str(data.get("id") or ""),
            display_name=str(data.get("displayName") or ""),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class OperationOutcome:
    """Result of one independent remote mutation."""

    target: str
    action: str
    success: bool
    error: Optional[str] = None

    def summary(self) -> str:
        status = "OK" if self.success else f"FAILED ({self.error})"
        return f"{self.action} {self.target}: {status}"


@dataclass
class UserUpdate:
    """Sparse change set for a user; ``None`` means leave unchanged."""

    display_name: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    account_enabled: Optional[bool] = None

    def to_graph(self) -> Dict[str, Any]:
        payload = {
            "displayName": self.display_name,
            "jobTitle": self.job_title,
            "department": self.department,
            "accountEnabled": self.account_enabled,
        }
        return {key: value for key, value in payload.items() if value is not None}

    @property
    def is_empty(self) -> bool:
        return not self.to_graph()


@dataclass
class NewUserRequest:
    display_name: str
    user_principal_name: str
    mail_nickname: str
    password: str
    force_mfa_on_next_sign_in: bool = False


__all__ = [
    "AssignedLicense",
    "AuthenticationMethod",
    "DirectoryRole",
    "DirectoryUser",
    "LicenseSku",
    "MethodType",
    "NewUserRequest",
    "OperationOutcome",
    "UserUpdate",
]
