"""Interactive flows that connect operator prompts to the directory operations."""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .auth_methods import AuthMethodInventory
from .graph_client import GraphClientError
from .licenses import BulkRemoval, LicenseEngine, LicenseListChangedError, NoSeatsAvailableError
from .models import (
    AssignedLicense,
    AuthenticationMethod,
    DirectoryRole,
    DirectoryUser,
    LicenseSku,
    NewUserRequest,
    OperationOutcome,
    UserUpdate,
)
from .prompts import Prompter
from .search import DirectorySearch, SearchStage, SelectionError, pick
from .users import UserLifecycle, UserValidationError
from .validators import require_text, validate_password, validate_principal_name


@dataclass
class Console:
    """Everything an interactive flow needs, bound to one session."""

    prompter: Prompter
    search: DirectorySearch
    licenses: LicenseEngine
    methods: AuthMethodInventory
    users: UserLifecycle
    force_mfa_on_next_sign_in: bool = False


def _split_answers(raw: str) -> List[str]:
    return [part for part in re.split(r"[,\s]+", raw or "") if part]


def report_outcomes(prompter: Prompter, outcomes: Sequence[OperationOutcome]) -> None:
    if not outcomes:
        prompter.echo("Nothing was changed.")
        return
    for outcome in outcomes:
        prompter.echo(f"  {outcome.summary()}")
    failed = sum(1 for outcome in outcomes if not outcome.success)
    prompter.echo(f"{len(outcomes) - failed} succeeded, {failed} failed.")


def _show_users(prompter: Prompter, users: Sequence[DirectoryUser]) -> None:
    for position, user in enumerate(users, start=1):
        prompter.echo(f"  {position:>2}. {user.display_name or '-'}  <{user.user_principal_name}>")


def _show_skus(prompter: Prompter, skus: Sequence[LicenseSku]) -> None:
    for position, sku in enumerate(skus, start=1):
        prompter.echo(
            f"  {position:>2}. {sku.sku_part_number:<40} available {sku.available_units:>5} "
            f"(prepaid {sku.prepaid_units}, consumed {sku.consumed_units})"
        )


def _show_assigned(prompter: Prompter, licenses: Sequence[AssignedLicense]) -> None:
    for position, assigned in enumerate(licenses, start=1):
        prompter.echo(f"  {position:>2}. {assigned.sku_part_number}")
        if assigned.disabled_service_plans:
            prompter.echo(f"      disabled plans: {', '.join(assigned.disabled_service_plans)}")


def _show_methods(prompter: Prompter, methods: Sequence[AuthenticationMethod]) -> None:
    for position, method in enumerate(methods, start=1):
        prompter.echo(f"  {position:>2}. {method.description}")


# ---------------------------------------------------------------------- #
# User selection                                                         #
# ---------------------------------------------------------------------- #
def find_user(console: Console) -> Optional[DirectoryUser]:
    """Let the operator search for and pick one user; ``None`` means cancelled."""

    prompter = console.prompter
    while True:
        prompter.echo("Find a user:")
        prompter.echo("  1) Search by name or principal name")
        prompter.echo(f"  2) List the first {console.search.listing_limit} users")
        mode = prompter.ask("Choice (blank to cancel)")
        if not mode:
            return None

        if mode == "1":
            fragment = prompter.ask("Search text")
            if not fragment:
                prompter.warn("Search text cannot be empty.")
                continue
            result = console.search.search(fragment)
            if result.stage is SearchStage.NO_MATCH:
                if not prompter.confirm(f"No users match '{fragment}'. List all users instead?"):
                    return None
                users = console.search.list_all()
            else:
                if result.stage is SearchStage.FALLBACK:
                    prompter.warn("Search failed; showing the user listing instead.")
                users = result.users
        elif mode == "2":
            users = console.search.list_all()
        else:
            prompter.warn(f"'{mode}' is not a valid choice.")
            continue

        if not users:
            prompter.warn("No users found.")
            continue
        _show_users(prompter, users)
        try:
            return pick(users, prompter.ask("User number"))
        except SelectionError as exc:
            prompter.warn(str(exc))


def _collect_users(console: Console) -> List[DirectoryUser]:
    selected: List[DirectoryUser] = []
    while True:
        user = find_user(console)
        if user is None:
            break
        if any(existing.id == user.id for existing in selected):
            console.prompter.warn(f"{user.user_principal_name} is already in the batch.")
        else:
            selected.append(user)
        if not console.prompter.confirm("Add another user?"):
            break
    return selected


# ---------------------------------------------------------------------- #
# Licenses                                                               #
# ---------------------------------------------------------------------- #
def show_license_catalog(console: Console) -> List[LicenseSku]:
    skus = console.licenses.list_available()
    if not skus:
        console.prompter.echo("No subscribed licenses found.")
    _show_skus(console.prompter, skus)
    return skus


def select_license(console: Console) -> Optional[str]:
    """Pick a SKU with free seats; ``None`` when the operator cancels."""

    prompter = console.prompter
    while True:
        skus = console.licenses.list_available()
        if not skus:
            prompter.warn("No licenses are available in this tenant.")
            return None
        _show_skus(prompter, skus)
        answer = prompter.ask("License number (blank to cancel)")
        try:
            sku = LicenseEngine.choose(skus, answer)
        except NoSeatsAvailableError as exc:
            prompter.warn(str(exc))
            if prompter.confirm("Choose a different license?"):
                continue
            return None
        except SelectionError as exc:
            prompter.warn(str(exc))
            continue
        return sku.sku_id if sku else None


def assign_license_flow(console: Console) -> None:
    user = find_user(console)
    if user is None:
        return
    sku_id = select_license(console)
    if sku_id is None:
        return
    report_outcomes(
        console.prompter, [console.licenses.assign(user.id, sku_id, target=user.user_principal_name)]
    )


def _choose_licenses_to_remove(console: Console, user: DirectoryUser) -> List[AssignedLicense]:
    """Show the user's licenses and return the ones the operator numbers.

    The numbers always refer to the list just shown; if the assignments
    changed meanwhile the list is shown again.
    """

    prompter = console.prompter
    while True:
        current = console.licenses.current_licenses(user.id)
        if not current:
            prompter.echo(f"{user.user_principal_name} has no licenses.")
            return []
        prompter.echo(f"Licenses of {user.label}:")
        _show_assigned(prompter, current)
        answers = _split_answers(prompter.ask("License number(s) to remove (blank to skip)"))
        if not answers:
            return []
        try:
            return console.licenses.resolve_assigned(user.id, current, answers)
        except (LicenseListChangedError, SelectionError) as exc:
            prompter.warn(str(exc))


def remove_license_flow(console: Console) -> None:
    user = find_user(console)
    if user is None:
        return
    chosen = _choose_licenses_to_remove(console, user)
    if not chosen:
        return
    names = ", ".join(assigned.sku_part_number for assigned in chosen)
    if not console.prompter.confirm(f"Remove {names} from {user.user_principal_name}?"):
        return
    report_outcomes(
        console.prompter,
        [console.licenses.unassign(user.id, assigned.sku_id, target=user.user_principal_name) for assigned in chosen],
    )


def bulk_assign_flow(console: Console) -> List[OperationOutcome]:
    sku_id = select_license(console)
    if sku_id is None:
        return []
    users = _collect_users(console)
    if not users:
        return []
    if not console.prompter.confirm(f"Assign the license to {len(users)} user(s)?"):
        return []
    outcomes = console.licenses.bulk_assign(users, sku_id)
    report_outcomes(console.prompter, outcomes)
    return outcomes


def bulk_remove_flow(console: Console) -> List[OperationOutcome]:
    removals: List[BulkRemoval] = []
    while True:
        user = find_user(console)
        if user is None:
            break
        chosen = _choose_licenses_to_remove(console, user)
        if chosen:
            removals.append(BulkRemoval(user=user, licenses=chosen))
        if not console.prompter.confirm("Add another user?"):
            break
    if not removals:
        return []
    for removal in removals:
        names = ", ".join(assigned.sku_part_number for assigned in removal.licenses)
        console.prompter.echo(f"  {removal.user.user_principal_name}: {names}")
    total = sum(len(removal.licenses) for removal in removals)
    if not console.prompter.confirm(f"Remove {total} license(s) from {len(removals)} user(s)?"):
        return []
    outcomes = console.licenses.bulk_unassign(removals)
    report_outcomes(console.prompter, outcomes)
    return outcomes


# ---------------------------------------------------------------------- #
# Authentication methods                                                 #
# ---------------------------------------------------------------------- #
class MfaState(Enum):
    LISTING_METHODS = "listing_methods"
    REMOVING_ONE = "removing_one"
    REMOVING_ALL = "removing_all"
    EXIT = "exit"


def mfa_flow(console: Console, user: Optional[DirectoryUser] = None) -> None:
    """Review and remove a user's authentication methods.

    The method list is fetched again every time it is shown.
    """

    prompter = console.prompter
    if user is None:
        user = find_user(console)
        if user is None:
            return
    state = MfaState.LISTING_METHODS
    methods: List[AuthenticationMethod] = []
    selected: Optional[AuthenticationMethod] = None

    while state is not MfaState.EXIT:
        if state is MfaState.LISTING_METHODS:
            methods = console.methods.list(user.id)
            if not methods:
                prompter.echo(f"{user.user_principal_name} has no removable authentication methods.")
                state = MfaState.EXIT
                continue
            prompter.echo(f"Authentication methods of {user.label}:")
            _show_methods(prompter, methods)
            answer = prompter.ask("Method number to remove, 'all' for every method (blank to go back)")
            if not answer:
                state = MfaState.EXIT
            elif answer.lower() == "all":
                state = MfaState.REMOVING_ALL
            else:
                try:
                    selected = pick(methods, answer)
                    state = MfaState.REMOVING_ONE
                except SelectionError as exc:
                    prompter.warn(str(exc))

        elif state is MfaState.REMOVING_ONE:
            if selected is not None and prompter.confirm(f"Remove {selected.description}?"):
                report_outcomes(prompter, [console.methods.remove_one(user.id, selected)])
            selected = None
            state = MfaState.LISTING_METHODS

        elif state is MfaState.REMOVING_ALL:
            shown = list(methods)
            confirmed = prompter.confirm(
                f"Remove all {len(shown)} authentication method(s) from {user.user_principal_name}?"
            )
            if confirmed:
                report_outcomes(prompter, console.methods.remove_all(user.id, confirmed=True, methods=shown))
            state = MfaState.LISTING_METHODS


# ---------------------------------------------------------------------- #
# User lifecycle                                                         #
# ---------------------------------------------------------------------- #
def _ask_valid(prompter: Prompter, text: str, check: Callable[[str], str], secret: bool = False) -> Optional[str]:
    """Re-prompt until ``check`` accepts the answer; blank cancels."""

    while True:
        answer = prompter.secret(text) if secret else prompter.ask(text)
        if not answer:
            return None
        try:
            return check(answer)
        except ValueError as exc:
            prompter.warn(str(exc))


def _select_role(console: Console) -> Optional[DirectoryRole]:
    prompter = console.prompter
    roles = console.users.list_directory_roles()
    if not roles:
        prompter.warn("No activated directory roles were found.")
        return None
    for position, role in enumerate(roles, start=1):
        prompter.echo(f"  {position:>2}. {role.display_name}  ({role.id})")
    while True:
        answer = prompter.ask("Role number or id (blank to skip)")
        if not answer:
            return None
        by_id = next((role for role in roles if role.id.lower() == answer.lower()), None)
        if by_id:
            return by_id
        try:
            return pick(roles, answer)
        except SelectionError as exc:
            prompter.warn(str(exc))


def _free_principal_name(console: Console) -> Callable[[str], str]:
    def check(value: str) -> str:
        principal = validate_principal_name(value)
        if console.users.principal_exists(principal):
            raise ValueError(f"A user with principal name {principal} already exists")
        return principal

    return check


def create_user_flow(console: Console) -> Optional[DirectoryUser]:
    prompter = console.prompter
    display_name = _ask_valid(prompter, "Display name", lambda value: require_text(value, "Display name"))
    if display_name is None:
        return None
    principal_name = _ask_valid(prompter, "User principal name (user@domain.tld)", _free_principal_name(console))
    if principal_name is None:
        return None
    mail_nickname = _ask_valid(prompter, "Mail nickname", lambda value: require_text(value, "Mail nickname"))
    if mail_nickname is None:
        return None
    while True:
        password = _ask_valid(prompter, "Temporary password", validate_password, secret=True)
        if password is None:
            return None
        if prompter.secret("Repeat password") == password:
            break
        prompter.warn("Passwords do not match.")

    request = NewUserRequest(
        display_name=display_name,
        user_principal_name=principal_name,
        mail_nickname=mail_nickname,
        password=password,
        force_mfa_on_next_sign_in=console.force_mfa_on_next_sign_in,
    )
    try:
        user = console.users.create_user(request)
    except UserValidationError as exc:
        prompter.warn(str(exc))
        return None
    except GraphClientError as exc:
        prompter.warn(f"Could not create {principal_name}: {exc}")
        return None
    prompter.echo(f"Created {user.label}. The password must be changed at next sign-in.")

    if prompter.confirm("Assign a license now?"):
        sku_id = select_license(console)
        if sku_id:
            report_outcomes(prompter, [console.licenses.assign(user.id, sku_id, target=user.user_principal_name)])
    if prompter.confirm("Assign a directory role now?"):
        role = _select_role(console)
        if role:
            report_outcomes(prompter, [console.users.assign_directory_role(user.id, role)])
    return user


def update_user_flow(console: Console) -> None:
    prompter = console.prompter
    selected = find_user(console)
    if selected is None:
        return
    user = console.users.get_user(selected.id)
    prompter.echo("Press Enter to keep the current value.")
    changes = UserUpdate(
        display_name=prompter.ask(f"Display name [{user.display_name or '-'}]") or None,
        job_title=prompter.ask(f"Job title [{user.job_title or '-'}]") or None,
        department=prompter.ask(f"Department [{user.department or '-'}]") or None,
    )
    if changes.is_empty:
        prompter.echo("No changes.")
        return
    report_outcomes(prompter, [console.users.update_user(user.id, changes)])


def toggle_enabled_flow(console: Console) -> None:
    prompter = console.prompter
    user = find_user(console)
    if user is None:
        return
    if not prompter.confirm(f"Change the sign-in state of {user.user_principal_name}?"):
        return
    try:
        enabled = console.users.toggle_enabled(user.id)
    except GraphClientError as exc:
        prompter.warn(f"Could not change the sign-in state: {exc}")
        return
    prompter.echo(f"{user.user_principal_name} is now {'enabled' if enabled else 'disabled'}.")


def group_membership_flow(console: Console, add: bool) -> List[OperationOutcome]:
    prompter = console.prompter
    user = find_user(console)
    if user is None:
        return []
    verb = "add the user to" if add else "remove the user from"
    group_ids = _split_answers(prompter.ask(f"Group id(s) to {verb} (blank to cancel)"))
    if not group_ids:
        return []
    if add:
        outcomes = console.users.add_to_groups(user.id, group_ids)
    else:
        outcomes = console.users.remove_from_groups(user.id, group_ids)
    report_outcomes(prompter, outcomes)
    return outcomes


def user_details_flow(console: Console) -> None:
    prompter = console.prompter
    selected = find_user(console)
    if selected is None:
        return
    user = console.users.get_user(selected.id)
    prompter.echo(f"Display name:    {user.display_name or '-'}")
    prompter.echo(f"Principal name:  {user.user_principal_name}")
    prompter.echo(f"Mail nickname:   {user.mail_nickname or '-'}")
    prompter.echo(f"Job title:       {user.job_title or '-'}")
    prompter.echo(f"Department:      {user.department or '-'}")
    prompter.echo(f"Enabled:         {'yes' if user.account_enabled else 'no'}")
    prompter.echo("Licenses:")
    _show_assigned(prompter, console.licenses.current_licenses(user.id))
    prompter.echo("Groups:")
    for group in console.users.list_groups(user.id):
        prompter.echo(f"  - {group.get('displayName') or '-'} ({group.get('id')})")


__all__ = [
    "Console",
    "MfaState",
    "assign_license_flow",
    "bulk_assign_flow",
    "bulk_remove_flow",
    "create_user_flow",
    "find_user",
    "group_membership_flow",
    "mfa_flow",
    "remove_license_flow",
    "report_outcomes",
    "select_license",
    "show_license_catalog",
    "toggle_enabled_flow",
    "update_user_flow",
    "user_details_flow",
]
