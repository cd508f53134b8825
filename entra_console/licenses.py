"""License catalog lookups and license assignment."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from .graph_client import GraphClient, GraphClientError
from .models import AssignedLicense, DirectoryUser, LicenseSku, OperationOutcome
from .search import pick


logger = logging.getLogger(__name__)


class NoSeatsAvailableError(ValueError):
    """Raised when the chosen SKU has no unassigned seats left."""

    def __init__(self, sku: LicenseSku) -> None:
        super().__init__(
            f"{sku.sku_part_number} has no available seats "
            f"({sku.consumed_units} of {sku.prepaid_units} in use)."
        )
        self.sku = sku


class LicenseListChangedError(ValueError):
    """Raised when a user's licenses no longer match the list the operator was shown."""


@dataclass
class BulkRemoval:
    """One user and the licenses the operator picked to take away from them."""

    user: DirectoryUser
    licenses: List[AssignedLicense] = field(default_factory=list)

    @property
    def sku_ids(self) -> List[str]:
        return [assigned.sku_id for assigned in self.licenses]


class LicenseEngine:
    """Reads the SKU catalog and applies add/remove license calls.

    Adds and removes are always sent as separate ``assignLicense`` calls.
    """

    def __init__(self, client: GraphClient) -> None:
        self._client = client

    def list_available(self) -> List[LicenseSku]:
        return [LicenseSku.from_graph(entry) for entry in self._client.list_subscribed_skus() if entry.get("skuId")]

    @staticmethod
    def choose(skus: Sequence[LicenseSku], answer: str) -> Optional[LicenseSku]:
        """Turn a menu answer into a SKU that can be assigned.

        A blank answer cancels and returns ``None``.

        Raises:
            SelectionError: The answer is not a listed position.
            NoSeatsAvailableError: The SKU at that position has no free seats.
        """
        if not (answer or "").strip():
            return None
        sku = pick(skus, answer)
        if not sku.has_available_seats:
            raise NoSeatsAvailableError(sku)
        return sku

    def current_licenses(self, user_id: str) -> List[AssignedLicense]:
        return [AssignedLicense.from_graph(entry) for entry in self._client.get_user_license_details(user_id)]

    def resolve_assigned(
        self, user_id: str, displayed: Sequence[AssignedLicense], answers: Sequence[str]
    ) -> List[AssignedLicense]:
        """Map positions in the list the operator was shown to those licenses.

        The user's licenses are fetched again before anything is returned. When
        they no longer match ``displayed`` the answers are discarded, so a removal
        never targets a license the operator did not see.

        Raises:
            SelectionError: An answer is not a listed position.
            LicenseListChangedError: The assignments changed after ``displayed`` was fetched.
        """
        resolved: List[AssignedLicense] = []
        for answer in answers:
            selected = pick(displayed, answer)
            if selected not in resolved:
                resolved.append(selected)

        current = [assigned.sku_id for assigned in self.current_licenses(user_id)]
        if current != [assigned.sku_id for assigned in displayed]:
            logger.warning("Licenses of %s changed while a removal was being chosen.", user_id)
            raise LicenseListChangedError("The user's licenses changed after they were listed; choose again.")
        return resolved

    def assign(self, user_id: str, sku_id: str, target: Optional[str] = None) -> OperationOutcome:
        label = target or user_id
        try:
            self._client.add_license(user_id, sku_id)
        except GraphClientError as exc:
            logger.error(
                "Failed to assign license %s to %s.", sku_id, label, extra={"details": str(exc)}
            )
            return OperationOutcome(target=label, action=f"Assign {sku_id} to", success=False, error=str(exc))
        logger.info("Assigned license %s to %s.", sku_id, label)
        return OperationOutcome(target=label, action=f"Assign {sku_id} to", success=True)

    def unassign(self, user_id: str, sku_id: str, target: Optional[str] = None) -> OperationOutcome:
        label = target or user_id
        try:
            self._client.remove_license(user_id, sku_id)
        except GraphClientError as exc:
            logger.error(
                "Failed to remove license %s from %s.", sku_id, label, extra={"details": str(exc)}
            )
            return OperationOutcome(target=label, action=f"Remove {sku_id} from", success=False, error=str(exc))
        logger.info("Removed license %s from %s.", sku_id, label)
        return OperationOutcome(target=label, action=f"Remove {sku_id} from", success=True)

    def bulk_assign(self, users: Iterable[DirectoryUser], sku_id: str) -> List[OperationOutcome]:
        """Assign one SKU to every user, in order, regardless of earlier failures."""

        return [self.assign(user.id, sku_id, target=user.user_principal_name) for user in users]

    def bulk_unassign(self, removals: Iterable[BulkRemoval]) -> List[OperationOutcome]:
        outcomes: List[OperationOutcome] = []
        for removal in removals:
            for sku_id in removal.sku_ids:
                outcomes.append(self.unassign(removal.user.id, sku_id, target=removal.user.user_principal_name))
        return outcomes


__all__ = ["BulkRemoval", "LicenseEngine", "LicenseListChangedError", "NoSeatsAvailableError"]
