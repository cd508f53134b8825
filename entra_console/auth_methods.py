"""Inventory and removal of user authentication methods."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .graph_client import GraphClient, GraphClientError
from .models import AuthenticationMethod, OperationOutcome


logger = logging.getLogger(__name__)


class AuthMethodInventory:
    """Lists a user's authentication methods and deletes them one by one.

    The password method is never listed and therefore never removed.
    """

    def __init__(self, client: GraphClient) -> None:
        self._client = client

    def list(self, user_id: str) -> List[AuthenticationMethod]:
        methods = [AuthenticationMethod.from_graph(entry) for entry in self._client.list_authentication_methods(user_id)]
        return [method for method in methods if not method.is_password]

    def remove_one(self, user_id: str, method: AuthenticationMethod) -> OperationOutcome:
        if method.is_password:
            return OperationOutcome(
                target=method.label, action="Remove", success=False, error="The password method cannot be removed."
            )
        if not method.removable:
            logger.error(
                "Cannot remove authentication method %s for %s.",
                method.id,
                user_id,
                extra={"details": f"No delete endpoint is known for {method.raw_type or 'this type'}."},
            )
            return OperationOutcome(
                target=method.description,
                action="Remove",
                success=False,
                error=f"{method.label} methods cannot be removed with this tool.",
            )

        try:
            self._client.delete_authentication_method(user_id, method.method_type.endpoint, method.id)
        except GraphClientError as exc:
            logger.error(
                "Failed to remove %s method %s for %s.",
                method.label,
                method.id,
                user_id,
                extra={"details": str(exc)},
            )
            return OperationOutcome(target=method.description, action="Remove", success=False, error=str(exc))

        logger.info("Removed %s method %s for %s.", method.label, method.id, user_id)
        return OperationOutcome(target=method.description, action="Remove", success=True)

    def remove_all(
        self,
        user_id: str,
        confirmed: bool,
        methods: Optional[Sequence[AuthenticationMethod]] = None,
    ) -> List[OperationOutcome]:
        """Remove every method; nothing is deleted without confirmation.

        When ``methods`` is given only those are removed, so a method enrolled
        after the list was shown is left alone.
        """

        if not confirmed:
            return []
        targets = self.list(user_id) if methods is None else methods
        return [self.remove_one(user_id, method) for method in targets]


__all__ = ["AuthMethodInventory"]
