"""authgate CLI - email/password sign-in with a phone second factor.

Runs the same flow a login page does, from the terminal. Bot verification
tokens come from ``--recaptcha-token`` / ``AUTHGATE_RECAPTCHA_TOKEN`` or are
prompted for when a code has to be sent.
"""

import asyncio
import os
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.status import Status

import authgate
from authgate import console as ag_console
from authgate.config import get_settings
from authgate.context import AuthContext
from authgate.exceptions import AuthError
from authgate.flow import FlowController, FlowMode
from authgate.logging import configure_logging, get_logger
from authgate.mfa import MFAState
from authgate.models import Session
from authgate.widget import Container, TokenSource, TokenSourceBackend

# Configure logging early using env vars directly; the -v/-vv and --log-format
# flags in main_callback() may reconfigure later.
configure_logging(
    level=os.environ.get("AUTHGATE_LOG_LEVEL", "WARNING"),
    json_output=os.environ.get("AUTHGATE_LOG_FORMAT", "console") == "json",
)

LOG = get_logger(__name__)

NEW_CODE_KEYWORD = "new"

app = typer.Typer(
    name="authgate",
    help="""
    authgate - email/password sign-in with a phone second factor

    \b
    Quick start:
      authgate check                   Show configuration and readiness
      authgate login you@example.com   Sign in (prompts for password and code)
      authgate signup you@example.com  Create an account
      authgate reset-password EMAIL    Send a password reset email
    """,
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()


@app.callback()
def main_callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v for info, -vv for debug)",
        ),
    ] = 0,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            help="Log output format: console (human-readable) or json (structured)",
        ),
    ] = None,
) -> None:
    """authgate - email/password sign-in with a phone second factor."""
    settings = get_settings()
    json_output = (log_format or settings.log_format) == "json"

    if verbose >= 2:
        configure_logging(level="DEBUG", json_output=json_output)
    elif verbose >= 1:
        configure_logging(level="INFO", json_output=json_output)
    elif log_format is not None:
        configure_logging(level=settings.log_level, json_output=json_output)


@app.command("version")
def version() -> None:
    """Show authgate version."""
    console.print(f"authgate v{authgate.__version__}")


@app.command("check")
def check() -> None:
    """Show configuration and whether sign-in can proceed."""
    settings = get_settings()
    missing = settings.missing_keys()

    provider_display = "[green]configured[/green]"
    if missing:
        provider_display = f"[red]missing {', '.join(missing)}[/red]"

    if not settings.attestation_required:
        attestation_display = "[yellow]not enforced[/yellow] [dim](no site key)[/dim]"
    elif settings.app_check_debug_token is not None:
        attestation_display = "required [dim](debug token)[/dim]"
    else:
        attestation_display = "[red]required, no token source[/red]"

    info = f"""
[dim]Identity provider:[/dim]  {provider_display}
[dim]Project:[/dim]            {settings.project_id or "-"}
[dim]Attestation:[/dim]        {attestation_display}
[dim]Provider timeout:[/dim]   {settings.provider_timeout:g}s
[dim]Token lifetime:[/dim]     {settings.widget_token_ttl:g}s
[dim]Min password:[/dim]       {settings.min_password_length}
[dim]Log level:[/dim]          {settings.log_level}
[dim]Log format:[/dim]         {settings.log_format}"""

    console.print(Panel(info.strip(), title="Configuration", border_style="cyan"))
    if missing:
        ag_console.error("Sign-in is disabled until the missing settings are provided.")
        raise typer.Exit(1)


def _token_source(recaptcha_token: str | None) -> TokenSource:
    async def source() -> str:
        if recaptcha_token:
            return recaptcha_token
        return await asyncio.to_thread(
            typer.prompt, "Solved reCAPTCHA token", hide_input=True, err=True
        )

    return source


def _build_context(recaptcha_token: str | None) -> AuthContext:
    settings = get_settings()
    backend = TokenSourceBackend(
        _token_source(recaptcha_token), token_ttl=settings.widget_token_ttl
    )
    return AuthContext.from_settings(settings, backend=backend)


def _print_session(session: Session) -> None:
    ag_console.success(f"Signed in as {session.email or session.uid}")
    ag_console.out_console.print_json(
        data={
            "uid": session.uid,
            "email": session.email,
            "second_factor": session.second_factor,
            "expires_at": session.expires_at.isoformat() if session.expires_at else None,
        }
    )


async def _prompt(text: str) -> str:
    return await asyncio.to_thread(typer.prompt, text, err=True)


async def _send_code(flow: FlowController, factor: int | None) -> bool:
    resolver = flow.resolver
    assert resolver is not None
    index = factor
    if index is None:
        index = 1 if len(resolver.hints) == 1 else int(await _prompt("Send code to factor #"))
    if not 1 <= index <= len(resolver.hints):
        ag_console.error(f"Choose a factor between 1 and {len(resolver.hints)}.")
        return False

    handle = flow.widget
    if handle is None or not handle.is_ready:
        try:
            await resolver.wait_for_widget()
        except AuthError as exc:
            ag_console.error(exc.user_message)
            return False

    with Status("Sending verification code...", console=ag_console.err_console):
        await flow.send_code(resolver.hints[index - 1])
    return ag_console.report_form(flow)


async def _resolve_second_factor(flow: FlowController, factor: int | None) -> Session | None:
    resolver = flow.resolver
    if resolver is None or not ag_console.report_form(flow):
        return None
    ag_console.info("A second factor is required.")
    ag_console.err_console.print(ag_console.hints_table(resolver.hints))

    while not resolver.is_terminal:
        if resolver.state in (MFAState.HINTS_OFFERED, MFAState.FAILED):
            if not await _send_code(flow, factor):
                retry = await asyncio.to_thread(typer.confirm, "Try again?", err=True)
                if not retry:
                    return None
            continue

        code = await _prompt(f"Verification code (or '{NEW_CODE_KEYWORD}' to resend)")
        if code.strip().lower() == NEW_CODE_KEYWORD:
            flow.request_new_code()
            continue
        with Status("Verifying code...", console=ag_console.err_console):
            session = await flow.verify_code(code)
        if session is not None:
            return session
        ag_console.report_form(flow)

    return resolver.session


async def _login(
    email: str,
    password: str,
    recaptcha_token: str | None,
    factor: int | None,
) -> Session | None:
    async with _build_context(recaptcha_token) as auth:
        flow = auth.flow(Container("cli"))
        await flow.mount()
        flow.form.email = email
        flow.form.password = password
        with Status("Logging in...", console=ag_console.err_console):
            result = await flow.login()
        if flow.mode is FlowMode.MFA_PROMPT:
            return await _resolve_second_factor(flow, factor)
        if isinstance(result, Session):
            return result
        ag_console.report_form(flow)
        return None


@app.command("login")
def login(
    email: Annotated[str, typer.Argument(help="Account email")],
    password: Annotated[
        str,
        typer.Option("--password", "-p", prompt=True, hide_input=True, help="Account password"),
    ],
    recaptcha_token: Annotated[
        str | None,
        typer.Option(
            "--recaptcha-token",
            envvar="AUTHGATE_RECAPTCHA_TOKEN",
            help="Solved reCAPTCHA token for sending the second-factor code",
        ),
    ] = None,
    factor: Annotated[
        int | None,
        typer.Option("--factor", "-f", min=1, help="Second factor number to send the code to"),
    ] = None,
) -> None:
    """Sign in, resolving a phone second factor if the account has one."""
    session = asyncio.run(_login(email, password, recaptcha_token, factor))
    if session is None:
        raise typer.Exit(1)
    _print_session(session)


async def _signup(email: str, password: str) -> bool:
    async with _build_context(None) as auth:
        flow = auth.flow(Container("cli"))
        flow.show_sign_up()
        flow.form.email = email
        flow.form.password = password
        with Status("Creating account...", console=ag_console.err_console):
            await flow.sign_up()
        return ag_console.report_form(flow)


@app.command("signup")
def signup(
    email: Annotated[str, typer.Argument(help="Email for the new account")],
    password: Annotated[
        str,
        typer.Option(
            "--password",
            "-p",
            prompt=True,
            hide_input=True,
            confirmation_prompt=True,
            help="Password for the new account",
        ),
    ],
) -> None:
    """Create an account."""
    if not asyncio.run(_signup(email, password)):
        raise typer.Exit(1)


async def _reset_password(email: str) -> bool:
    async with _build_context(None) as auth:
        flow = auth.flow(Container("cli"))
        flow.show_password_reset()
        flow.form.email = email
        with Status("Sending password reset email...", console=ag_console.err_console):
            await flow.reset_password()
        return ag_console.report_form(flow)


@app.command("reset-password")
def reset_password(
    email: Annotated[str, typer.Argument(help="Account email")],
) -> None:
    """Send a password reset email."""
    if not asyncio.run(_reset_password(email)):
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
