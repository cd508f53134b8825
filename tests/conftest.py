"""Pytest shared fixtures: an in-memory directory and a scripted operator."""
import copy
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import pytest

from entra_console.auth_methods import AuthMethodInventory
from entra_console.graph_client import GraphError
from entra_console.licenses import LicenseEngine
from entra_console.logs import _HANDLER_MARKER
from entra_console.prompts import Prompter
from entra_console.search import DirectorySearch
from entra_console.users import UserLifecycle
from entra_console.workflows import Console

_QUOTED = re.compile(r"'((?:[^']|'')*)'")


def graph_error(status_code=400, code="Request_BadRequest", message="Bad request"):
    return GraphError(status_code, code, message)


def make_user(user_id, upn, display_name, **extra):
    payload = {
        "id": user_id,
        "userPrincipalName": upn,
        "displayName": display_name,
        "mailNickname": upn.split("@")[0],
        "jobTitle": None,
        "department": None,
        "accountEnabled": True,
    }
    payload.update(extra)
    return payload


def make_sku(sku_id, part_number, prepaid, consumed):
    return {
        "skuId": sku_id,
        "skuPartNumber": part_number,
        "prepaidUnits": {"enabled": prepaid, "suspended": 0, "warning": 0},
        "consumedUnits": consumed,
    }


def make_license_detail(sku_id, part_number, plans=()):
    return {
        "skuId": sku_id,
        "skuPartNumber": part_number,
        "servicePlans": [
            {"servicePlanName": name, "provisioningStatus": status} for name, status in plans
        ],
    }


class FakeGraphClient:
    """Stands in for ``GraphClient`` with dictionaries instead of HTTP calls."""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.skus: List[Dict[str, Any]] = []
        self.license_details: Dict[str, List[Dict[str, Any]]] = {}
        self.groups: Dict[str, Dict[str, Any]] = {}
        self.memberships: Dict[str, List[str]] = {}
        self.roles: List[Dict[str, Any]] = []
        self.role_members: Dict[str, List[str]] = {}
        self.methods: Dict[str, List[Dict[str, Any]]] = {}
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []

    # helpers ----------------------------------------------------------
    def add_user(self, payload):
        self.users[payload["id"]] = dict(payload)
        return payload

    def fail(self, operation, key, error=None):
        self.failures[(operation, key)] = error or graph_error()

    def _record(self, operation, *args):
        self.calls.append((operation, args))
        key = str(args[0]) if args else ""
        error = self.failures.get((operation, key)) or self.failures.get((operation, "*"))
        if error is not None:
            raise error

    def calls_to(self, operation):
        return [args for name, args in self.calls if name == operation]

    # users ------------------------------------------------------------
    def search_users(self, filter_expression, top, advanced=False):
        self._record("search_users", filter_expression, top, advanced)
        match = _QUOTED.search(filter_expression)
        fragment = match.group(1).replace("''", "'").lower() if match else ""
        if filter_expression.startswith("userPrincipalName eq"):
            test = lambda value: value == fragment
            fields = ("userPrincipalName",)
        elif filter_expression.startswith("startswith"):
            test = lambda value: value.startswith(fragment)
            fields = ("displayName", "userPrincipalName")
        else:
            test = lambda value: value.endswith(fragment)
            fields = ("displayName", "userPrincipalName")
        found = [
            copy.deepcopy(user)
            for user in self.users.values()
            if any(test(str(user.get(field) or "").lower()) for field in fields)
        ]
        return found[:top]

    def list_users(self, top):
        self._record("list_users", top)
        return [copy.deepcopy(user) for user in self.users.values()][:top]

    def find_user_by_principal_name(self, principal_name):
        values = self.search_users(f"userPrincipalName eq '{principal_name}'", top=1)
        return values[0] if values else None

    def get_user(self, user_id, select=None):
        self._record("get_user", user_id, select)
        if user_id not in self.users:
            raise graph_error(404, "Request_ResourceNotFound", "User not found")
        return copy.deepcopy(self.users[user_id])

    def create_user(self, payload):
        self._record("create_user", payload)
        user_id = f"new-{len(self.users) + 1}"
        record = {
            "id": user_id,
            "userPrincipalName": payload["userPrincipalName"],
            "displayName": payload["displayName"],
            "mailNickname": payload["mailNickname"],
            "accountEnabled": payload["accountEnabled"],
        }
        self.users[user_id] = record
        return copy.deepcopy(record)

    def update_user(self, user_id, **fields):
        self._record("update_user", user_id, fields)
        self.users[user_id].update(fields)
        return {}

    # licenses ---------------------------------------------------------
    def list_subscribed_skus(self):
        self._record("list_subscribed_skus")
        return copy.deepcopy(self.skus)

    def get_user_license_details(self, user_id):
        self._record("get_user_license_details", user_id)
        return copy.deepcopy(self.license_details.get(user_id, []))

    def add_license(self, user_id, sku_id):
        self._record("add_license", user_id, sku_id)
        return {}

    def remove_license(self, user_id, sku_id):
        self._record("remove_license", user_id, sku_id)
        return {}

    # groups -----------------------------------------------------------
    def get_group(self, group_id):
        self._record("get_group", group_id)
        if group_id not in self.groups:
            raise graph_error(404, "Request_ResourceNotFound", f"Resource '{group_id}' does not exist")
        return copy.deepcopy(self.groups[group_id])

    def add_user_to_group(self, user_id, group_id):
        self._record("add_user_to_group", user_id, group_id)
        self.memberships.setdefault(group_id, []).append(user_id)

    def remove_user_from_group(self, user_id, group_id):
        self._record("remove_user_from_group", user_id, group_id)
        members = self.memberships.get(group_id, [])
        if user_id in members:
            members.remove(user_id)

    def get_user_groups(self, user_id):
        self._record("get_user_groups", user_id)
        return [
            copy.deepcopy(self.groups[group_id])
            for group_id, members in self.memberships.items()
            if user_id in members and group_id in self.groups
        ]

    # roles ------------------------------------------------------------
    def list_directory_roles(self):
        self._record("list_directory_roles")
        return copy.deepcopy(self.roles)

    def add_directory_role_member(self, role_id, user_id):
        self._record("add_directory_role_member", role_id, user_id)
        self.role_members.setdefault(role_id, []).append(user_id)

    # authentication methods -------------------------------------------
    def list_authentication_methods(self, user_id):
        self._record("list_authentication_methods", user_id)
        return copy.deepcopy(self.methods.get(user_id, []))

    def delete_authentication_method(self, user_id, endpoint, method_id):
        self.calls.append(("delete_authentication_method", (user_id, endpoint, method_id)))
        error = self.failures.get(("delete_authentication_method", method_id))
        if error is not None:
            raise error
        self.methods[user_id] = [entry for entry in self.methods.get(user_id, []) if entry["id"] != method_id]


class ScriptedPrompter(Prompter):
    """Answers prompts from pre-recorded queues and keeps everything echoed."""

    def __init__(self, answers=(), confirmations=(), secrets=()):
        self.answers = list(answers)
        self.confirmations = list(confirmations)
        self.secrets = list(secrets)
        self.output: List[str] = []
        self.prompts: List[str] = []

    def _next(self, queue, text):
        self.prompts.append(text)
        if not queue:
            raise AssertionError(f"Unexpected prompt: {text!r}")
        return queue.pop(0)

    def ask(self, text):
        return self._next(self.answers, text)

    def secret(self, text):
        return self._next(self.secrets, text)

    def confirm(self, text, default=False):
        return self._next(self.confirmations, text)

    def echo(self, text=""):
        self.output.append(text)

    @property
    def text(self):
        return "\n".join(self.output)


@pytest.fixture
def package_logger():
    """The ``entra_console`` logger, put back as it was after the test."""

    logger = logging.getLogger("entra_console")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    for handler in list(logger.handlers):
        if handler not in saved[0] and getattr(handler, _HANDLER_MARKER, False):
            handler.close()
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


@pytest.fixture
def graph():
    return FakeGraphClient()


@pytest.fixture
def make_console(graph):
    def _factory(answers=(), confirmations=(), secrets=(), usage_location=None, force_mfa=False):
        prompter = ScriptedPrompter(answers, confirmations, secrets)
        console = Console(
            prompter=prompter,
            search=DirectorySearch(graph, result_limit=10, listing_limit=20),
            licenses=LicenseEngine(graph),
            methods=AuthMethodInventory(graph),
            users=UserLifecycle(graph, usage_location=usage_location),
            force_mfa_on_next_sign_in=force_mfa,
        )
        return console

    return _factory
