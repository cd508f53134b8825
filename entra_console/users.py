"""Create and update directory users, their groups and directory roles."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from .graph_client import ErrorKind, GraphClient, GraphClientError
from .models import DirectoryRole, DirectoryUser, NewUserRequest, OperationOutcome, UserUpdate
from .validators import require_text, validate_password, validate_principal_name


logger = logging.getLogger(__name__)


class UserValidationError(ValueError):
    """A field of a new user failed local validation."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class UserLifecycle:
    def __init__(self, client: GraphClient, usage_location: Optional[str] = None) -> None:
        self._client = client
        self._usage_location = usage_location

    # ------------------------------------------------------------------ #
    # Creation                                                           #
    # ------------------------------------------------------------------ #
    def principal_exists(self, principal_name: str) -> bool:
        """True only when a lookup succeeds and returns a match."""

        try:
            return self._client.find_user_by_principal_name(principal_name) is not None
        except GraphClientError as exc:
            logger.warning("Could not check whether %s exists: %s", principal_name, exc)
            return False

    def validate(self, request: NewUserRequest) -> NewUserRequest:
        """Check every field locally, then make sure the principal name is free.

        Raises:
            UserValidationError: For the first field that fails.
        """
        checks = (
            ("display_name", lambda: require_text(request.display_name, "Display name")),
            ("user_principal_name", lambda: validate_principal_name(request.user_principal_name)),
            ("mail_nickname", lambda: require_text(request.mail_nickname, "Mail nickname")),
            ("password", lambda: validate_password(request.password)),
        )
        cleaned: Dict[str, str] = {}
        for field_name, check in checks:
            try:
                cleaned[field_name] = check()
            except ValueError as exc:
                raise UserValidationError(field_name, str(exc)) from exc

        if self.principal_exists(cleaned["user_principal_name"]):
            raise UserValidationError(
                "user_principal_name", f"A user with principal name {cleaned['user_principal_name']} already exists"
            )
        return NewUserRequest(
            display_name=cleaned["display_name"],
            user_principal_name=cleaned["user_principal_name"],
            mail_nickname=cleaned["mail_nickname"],
            password=cleaned["password"],
            force_mfa_on_next_sign_in=request.force_mfa_on_next_sign_in,
        )

    def create_user(self, request: NewUserRequest) -> DirectoryUser:
        """Validate and create the account; the password must be changed at next sign-in.

        Raises:
            UserValidationError: Validation failed; nothing was sent.
            GraphClientError: The directory rejected the new account.
        """
        valid = self.validate(request)
        payload: Dict[str, Any] = {
            "accountEnabled": True,
            "displayName": valid.display_name,
            "mailNickname": valid.mail_nickname,
            "userPrincipalName": valid.user_principal_name,
            "passwordProfile": {
                "password": valid.password,
                "forceChangePasswordNextSignIn": True,
                "forceChangePasswordNextSignInWithMfa": bool(valid.force_mfa_on_next_sign_in),
            },
        }
        if self._usage_location:
            payload["usageLocation"] = self._usage_location

        try:
            created = self._client.create_user(payload)
        except GraphClientError as exc:
            logger.error("Failed to create user %s.", valid.user_principal_name, extra={"details": str(exc)})
            raise
        logger.info("Created user %s.", valid.user_principal_name)
        return DirectoryUser.from_graph(created)

    # ------------------------------------------------------------------ #
    # Updates                                                            #
    # ------------------------------------------------------------------ #
    def get_user(self, user_id: str) -> DirectoryUser:
        return DirectoryUser.from_graph(self._client.get_user(user_id))

    def update_user(self, user_id: str, changes: UserUpdate) -> OperationOutcome:
        """Send only the fields present in ``changes``."""

        payload = changes.to_graph()
        if not payload:
            return OperationOutcome(target=user_id, action="Update", success=True, error=None)
        try:
            self._client.update_user(user_id, **payload)
        except GraphClientError as exc:
            logger.error(
                "Failed to update %s for user %s.", ", ".join(sorted(payload)), user_id, extra={"details": str(exc)}
            )
            return OperationOutcome(target=user_id, action="Update", success=False, error=str(exc))
        logger.info("Updated %s for user %s.", ", ".join(sorted(payload)), user_id)
        return OperationOutcome(target=user_id, action="Update", success=True)

    def toggle_enabled(self, user_id: str) -> bool:
        """Flip the account's enabled flag as currently stored and return the new value."""

        current = self._client.get_user(user_id, select="id,accountEnabled")
        new_state = not bool(current.get("accountEnabled"))
        try:
            self._client.update_user(user_id, **UserUpdate(account_enabled=new_state).to_graph())
        except GraphClientError as exc:
            logger.error("Failed to change sign-in state for %s.", user_id, extra={"details": str(exc)})
            raise
        logger.info("%s user %s.", "Enabled" if new_state else "Disabled", user_id)
        return new_state

    # ------------------------------------------------------------------ #
    # Groups                                                             #
    # ------------------------------------------------------------------ #
    def add_to_groups(self, user_id: str, group_ids: Iterable[str]) -> List[OperationOutcome]:
        return self._change_groups(user_id, group_ids, add=True)

    def remove_from_groups(self, user_id: str, group_ids: Iterable[str]) -> List[OperationOutcome]:
        return self._change_groups(user_id, group_ids, add=False)

    def _change_groups(self, user_id: str, group_ids: Iterable[str], add: bool) -> List[OperationOutcome]:
        action = "Add to group" if add else "Remove from group"
        outcomes: List[OperationOutcome] = []
        for raw_id in group_ids:
            group_id = str(raw_id or "").strip()
            if not group_id:
                continue
            try:
                group = self._client.get_group(group_id)
            except GraphClientError as exc:
                message = (
                    f"Group {group_id} was not found."
                    if exc.kind is ErrorKind.NOT_FOUND
                    else f"Could not look up group {group_id}: {exc}"
                )
                logger.error("%s failed for %s.", action, user_id, extra={"details": message})
                outcomes.append(OperationOutcome(target=group_id, action=action, success=False, error=message))
                continue

            label = group.get("displayName") or group_id
            try:
                if add:
                    self._client.add_user_to_group(user_id, group_id)
                else:
                    self._client.remove_user_from_group(user_id, group_id)
            except GraphClientError as exc:
                logger.error("%s %s failed for %s.", action, label, user_id, extra={"details": str(exc)})
                outcomes.append(OperationOutcome(target=label, action=action, success=False, error=str(exc)))
                continue
            outcomes.append(OperationOutcome(target=label, action=action, success=True))
        return outcomes

    def list_groups(self, user_id: str) -> List[Dict[str, Any]]:
        return self._client.get_user_groups(user_id)

    # ------------------------------------------------------------------ #
    # Directory roles                                                    #
    # ------------------------------------------------------------------ #
    def list_directory_roles(self) -> List[DirectoryRole]:
        roles = [DirectoryRole.from_graph(entry) for entry in self._client.list_directory_roles()]
        return sorted((role for role in roles if role.id), key=lambda role: role.display_name.lower())

    def assign_directory_role(self, user_id: str, role: DirectoryRole) -> OperationOutcome:
        try:
            self._client.add_directory_role_member(role.id, user_id)
        except GraphClientError as exc:
            logger.error(
                "Failed to assign directory role %s to %s.", role.display_name, user_id, extra={"details": str(exc)}
            )
            return OperationOutcome(target=role.display_name, action="Assign role", success=False, error=str(exc))
        logger.info("Assigned directory role %s to %s.", role.display_name, user_id)
        return OperationOutcome(target=role.display_name, action="Assign role", success=True)


__all__ = ["UserLifecycle", "UserValidationError"]
