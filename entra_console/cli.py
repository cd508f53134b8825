"""Command line interface for the directory administration console."""
from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import typer

from .auth_methods import AuthMethodInventory
from .config import AppConfig, ConfigurationError, load_config
from .graph_client import ErrorKind, GraphClient, GraphClientError
from .licenses import LicenseEngine
from .logs import configure_logging
from .prompts import Prompter, TyperPrompter
from .search import DirectorySearch
from .session import SessionError, SessionManager, connect_with_retries
from .users import UserLifecycle
from .workflows import (
    Console,
    assign_license_flow,
    bulk_assign_flow,
    bulk_remove_flow,
    create_user_flow,
    group_membership_flow,
    mfa_flow,
    remove_license_flow,
    show_license_catalog,
    toggle_enabled_flow,
    update_user_flow,
    user_details_flow,
)

logger = logging.getLogger(__name__)

app = typer.Typer(help="Administer users, licenses and authentication methods in Microsoft Entra ID.")

MenuEntry = Tuple[str, str, Callable[[Console], object]]

MENU: List[MenuEntry] = [
    ("1", "Show user details", user_details_flow),
    ("2", "Create user", create_user_flow),
    ("3", "Update user fields", update_user_flow),
    ("4", "Enable or disable user", toggle_enabled_flow),
    ("5", "Add user to groups", functools.partial(group_membership_flow, add=True)),
    ("6", "Remove user from groups", functools.partial(group_membership_flow, add=False)),
    ("7", "Show license catalog", show_license_catalog),
    ("8", "Assign license", assign_license_flow),
    ("9", "Remove license", remove_license_flow),
    ("10", "Assign license to several users", bulk_assign_flow),
    ("11", "Remove licenses from several users", bulk_remove_flow),
    ("12", "Manage authentication methods", mfa_flow),
]


def _load_configuration(config_path: Optional[Path]) -> AppConfig:
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)
    configure_logging(config.logging)
    return config


def build_console(
    config: AppConfig, prompter: Optional[Prompter] = None
) -> Tuple[SessionManager, Console]:
    session = SessionManager(config.graph, notify=typer.echo)
    client = GraphClient(session, timeout=config.graph.request_timeout)
    console = Console(
        prompter=prompter or TyperPrompter(),
        search=DirectorySearch(client, config.search.result_limit, config.search.listing_limit),
        licenses=LicenseEngine(client),
        methods=AuthMethodInventory(client),
        users=UserLifecycle(client, usage_location=config.graph.default_usage_location),
        force_mfa_on_next_sign_in=config.policy.force_mfa_on_next_sign_in,
    )
    return session, console


def _connect(session: SessionManager, config: AppConfig) -> None:
    try:
        connect_with_retries(session, config.session.max_attempts, config.session.retry_delay_seconds)
    except SessionError as exc:
        logger.error("Giving up on Microsoft Graph sign-in.", extra={"details": str(exc)})
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def run_action(console: Console, action: Callable[[Console], object]) -> None:
    """Run one menu action, reporting remote failures instead of unwinding the menu."""

    try:
        action(console)
    except GraphClientError as exc:
        if exc.kind is ErrorKind.AUTHORIZATION_EXPIRED:
            console.prompter.warn("The session has expired; signing in again.")
            return
        logger.error("Directory operation failed.", extra={"details": str(exc)})
        console.prompter.warn(f"The directory service returned an error: {exc}")


def run_menu(session: SessionManager, console: Console, config: AppConfig) -> None:
    prompter = console.prompter
    actions = {key: action for key, _, action in MENU}
    try:
        while True:
            _connect(session, config)
            prompter.echo("")
            for key, title, _ in MENU:
                prompter.echo(f"{key:>3}) {title}")
            prompter.echo("  q) Quit")
            choice = prompter.ask("Select an option").lower()
            if choice in {"q", "quit", "exit"}:
                break
            action = actions.get(choice)
            if action is None:
                if choice:
                    prompter.warn(f"'{choice}' is not a menu option.")
                continue
            run_action(console, action)
    finally:
        session.disconnect()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
) -> None:
    """Open the interactive menu when no command is given."""

    if ctx.invoked_subcommand is None:
        menu(config_path)


@app.command("menu")
def menu(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
) -> None:
    """Open the interactive administration menu."""

    config = _load_configuration(config_path)
    session, console = build_console(config)
    run_menu(session, console, config)


@app.command("licenses")
def licenses(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
) -> None:
    """Print the license catalog with seat counts."""

    config = _load_configuration(config_path)
    session, console = build_console(config)
    _connect(session, config)
    try:
        run_action(console, show_license_catalog)
    finally:
        session.disconnect()


@app.command("mfa")
def mfa(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
) -> None:
    """Review and remove a user's authentication methods."""

    config = _load_configuration(config_path)
    session, console = build_console(config)
    _connect(session, config)
    try:
        run_action(console, mfa_flow)
    finally:
        session.disconnect()


@app.command("whoami")
def whoami(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
) -> None:
    """Sign in and show the account and the scopes it was granted."""

    config = _load_configuration(config_path)
    session, _ = build_console(config)
    _connect(session, config)
    try:
        context = session.context
        if context is None:
            typer.echo("Error: No account is signed in.")
            raise typer.Exit(code=1)
        typer.echo(f"Signed in as {context.username}")
        typer.echo("Granted scopes:")
        for scope in sorted(context.scopes):
            typer.echo(f"  - {scope}")
    finally:
        session.disconnect()


def run():
    app()


if __name__ == "__main__":
    run()
