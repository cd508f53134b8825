"""Resolve a search fragment to directory users."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence

from .graph_client import GraphClient, GraphClientError
from .models import DirectoryUser


logger = logging.getLogger(__name__)

DEFAULT_RESULT_LIMIT = 10
DEFAULT_LISTING_LIMIT = 20


class SearchStage(Enum):
    PREFIX = "prefix"
    SUFFIX = "suffix"
    FALLBACK = "fallback"
    NO_MATCH = "no_match"


@dataclass
class SearchResult:
    stage: SearchStage
    users: List[DirectoryUser] = field(default_factory=list)


class SelectionError(ValueError):
    """Raised when a menu answer does not point at a listed entry."""


def pick(entries: Sequence, answer: str):
    """Return the entry at 1-indexed position ``answer``."""

    cleaned = (answer or "").strip()
    if not (cleaned.isascii() and cleaned.isdigit()):
        raise SelectionError(f"'{cleaned}' is not a number from the list.")
    index = int(cleaned)
    if index < 1 or index > len(entries):
        raise SelectionError(f"Choose a number between 1 and {len(entries)}.")
    return entries[index - 1]


class DirectorySearch:
    """Two-pass user search: prefix match first, then suffix match."""

    def __init__(
        self,
        client: GraphClient,
        result_limit: int = DEFAULT_RESULT_LIMIT,
        listing_limit: int = DEFAULT_LISTING_LIMIT,
    ) -> None:
        self._client = client
        self.result_limit = result_limit
        self.listing_limit = listing_limit

    def search(self, fragment: str) -> SearchResult:
        cleaned = (fragment or "").strip()
        if not cleaned:
            raise ValueError("Search text is required.")
        escaped = cleaned.replace("'", "''")

        try:
            prefix = self._client.search_users(
                f"startswith(displayName,'{escaped}') or startswith(userPrincipalName,'{escaped}')",
                top=self.result_limit,
            )
            if prefix:
                return SearchResult(SearchStage.PREFIX, self._to_users(prefix))

            suffix = self._client.search_users(
                f"endswith(displayName,'{escaped}') or endswith(userPrincipalName,'{escaped}')",
                top=self.result_limit,
                advanced=True,
            )
            if suffix:
                return SearchResult(SearchStage.SUFFIX, self._to_users(suffix))
        except GraphClientError as exc:
            logger.warning("User search for '%s' failed (%s); listing users instead.", cleaned, exc)
            return SearchResult(SearchStage.FALLBACK, self.list_all())

        return SearchResult(SearchStage.NO_MATCH)

    def list_all(self) -> List[DirectoryUser]:
        return self._to_users(self._client.list_users(top=self.listing_limit))

    def _to_users(self, values: Sequence[dict]) -> List[DirectoryUser]:
        return [DirectoryUser.from_graph(value) for value in values if value.get("id")]


__all__ = ["DirectorySearch", "SearchResult", "SearchStage", "SelectionError", "pick"]
