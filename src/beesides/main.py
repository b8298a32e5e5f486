"""
Beesides - CLI Entry Point.

Usage:
    beesides status               Check the current session
    beesides login EMAIL          Sign in
    beesides register EMAIL       Create an account and start onboarding
    beesides onboard              Run (or resume) onboarding
    beesides skip-onboarding      Leave onboarding for now
    beesides logout               Sign out
    beesides --help               Show help

The renewable credential and navigation flags live under settings.state_dir,
so a session survives between invocations through the recovery path.
"""

import asyncio
import logging
import sys
from dataclasses import dataclass

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.spinner import Spinner
from rich.table import Table

from beesides.db.adapter import ProfileStore
from beesides.errors import (
    AuthError,
    InvalidTransition,
    PersistenceError,
    ProfileNotFound,
    ValidationError,
)
from beesides.models import NavigationIntent, SessionStatus
from beesides.redirect import View, decide
from beesides.session import SessionManager
from beesides.storage import KeyValueStore

app = typer.Typer(
    name="beesides",
    help="Beesides - session and onboarding tools.",
    add_completion=False,
)
console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Setup logging with visible output."""
    from beesides.config import settings

    level = logging.DEBUG if verbose else getattr(logging, settings.log_level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    setup_logging(verbose)


@dataclass
class _Context:
    manager: SessionManager
    profiles: ProfileStore
    intent_store: KeyValueStore


def _build_context() -> _Context:
    """Wire the session manager to Supabase and the local state dir."""
    from beesides.config import settings
    from beesides.db.client import SupabaseIdentityService, SupabaseProfileStore
    from beesides.storage import CredentialCache, JsonFileKeyValueStore

    durable = JsonFileKeyValueStore(settings.state_dir / "session.json")
    profiles = SupabaseProfileStore()
    manager = SessionManager(
        identity=SupabaseIdentityService(recovery_redirect_url=settings.recovery_redirect_url),
        profiles=profiles,
        credentials=CredentialCache(durable),
    )
    return _Context(
        manager=manager,
        profiles=profiles,
        intent_store=JsonFileKeyValueStore(settings.state_dir / "navigation.json"),
    )


def _fail(message: str) -> None:
    console.print(f"\n[red]❌ {message}[/red]")
    raise typer.Exit(1)


async def _onboarding_completed(ctx: _Context) -> bool | None:
    identity = ctx.manager.session.identity
    if identity is None:
        return None
    try:
        profile = await ctx.profiles.read_profile(identity.user_id)
    except ProfileNotFound:
        return False
    except PersistenceError:
        return None
    return profile.onboarding_completed


@app.command()
def health() -> None:
    """Check configuration."""
    from beesides.config import get_settings

    console.print("\n[bold]Beesides Health Check[/bold]\n")

    try:
        settings = get_settings()
        console.print("✅ Configuration loaded")
        console.print(f"   Environment: {settings.beesides_env}")
        console.print(f"   Log level: {settings.log_level}")
        console.print(f"   State dir: {settings.state_dir}")

        if settings.supabase_url.startswith("https://"):
            console.print("✅ Supabase URL configured")
        else:
            console.print("❌ Supabase URL missing or invalid")

        if settings.supabase_anon_key:
            console.print("✅ Supabase anon key configured")
        else:
            console.print("❌ Supabase anon key missing")

        from onboarding import resolve_steps
        steps = resolve_steps(settings.onboarding_steps)
        console.print(f"✅ Onboarding steps: {', '.join(step.step_id for step in steps)}")

    except Exception as e:
        console.print(f"\n[red]❌ Configuration error: {e}[/red]")
        console.print("[dim]Make sure you have a .env file with required variables.[/dim]")
        raise typer.Exit(1)


@app.command()
def status() -> None:
    """Show the current session and where routing would send the user."""
    ctx = _build_context()

    async def _status():
        session = await ctx.manager.initialize()
        completed = await _onboarding_completed(ctx)
        await ctx.manager.wait_idle()
        return session, completed

    with Live(Spinner("dots", text="Checking session..."), console=console, transient=True):
        session, completed = asyncio.run(_status())

    from beesides.storage import read_navigation_intent
    intent = read_navigation_intent(ctx.intent_store)

    table = Table(title="Session", show_header=False)
    table.add_row("Status", session.status.value)
    if session.identity:
        table.add_row("User", session.identity.user_id)
        table.add_row("Email", session.identity.email or "-")
        table.add_row("Name", session.identity.display_name or "-")
    if session.error:
        table.add_row("Error", session.error)
    table.add_row("Onboarding completed", "unknown" if completed is None else str(completed))
    table.add_row("Navigation intent", intent.value)
    table.add_row("Protected view", decide(session, completed, intent, View.PROTECTED).value)
    table.add_row("Onboarding view", decide(session, completed, intent, View.ONBOARDING).value)
    console.print(table)

    if session.status == SessionStatus.FAILED:
        console.print("[yellow]Identity service unreachable. Try again shortly.[/yellow]")


@app.command()
def login(
    email: str = typer.Argument(..., help="Account email"),
    new_user: bool = typer.Option(False, "--new-user", help="Make sure a profile exists after sign-in"),
) -> None:
    """Sign in with email and password."""
    ctx = _build_context()
    password = typer.prompt("Password", hide_input=True)

    try:
        identity = asyncio.run(ctx.manager.sign_in(email, password, is_new_user_hint=new_user))
    except AuthError as e:
        _fail(f"Login failed: {e}")

    console.print(f"\n✅ Signed in as [bold]{identity.display_name or identity.email}[/bold]")


@app.command()
def register(
    email: str = typer.Argument(..., help="Account email"),
    name: str = typer.Option(..., "--name", "-n", prompt=True, help="Display name"),
) -> None:
    """Create an account and flag the next onboarding as a fresh registration."""
    from beesides.storage import mark_navigation_intent

    ctx = _build_context()
    password = typer.prompt("Password", hide_input=True, confirmation_prompt=True)

    try:
        identity = asyncio.run(ctx.manager.sign_up(email, password, name))
    except AuthError as e:
        _fail(f"Registration failed: {e}")

    mark_navigation_intent(ctx.intent_store, NavigationIntent.FROM_REGISTRATION)
    console.print(f"\n✅ Account created for [bold]{identity.email}[/bold]")
    console.print("[dim]Run `beesides onboard` to set up your profile.[/dim]")


@app.command()
def logout() -> None:
    """Sign out (local state is always cleared)."""
    ctx = _build_context()

    async def _logout():
        await ctx.manager.initialize()
        await ctx.manager.sign_out()

    asyncio.run(_logout())
    console.print("\n[dim]Signed out. Goodbye! 👋[/dim]")


@app.command("forgot-password")
def forgot_password(email: str = typer.Argument(..., help="Account email")) -> None:
    """Send a password recovery email."""
    ctx = _build_context()
    try:
        asyncio.run(ctx.manager.begin_recovery(email))
    except AuthError as e:
        _fail(f"Failed to send recovery email: {e}")
    console.print("\n✅ Recovery email sent! Check your inbox (and spam folder).")


@app.command("reset-password")
def reset_password(token: str = typer.Argument(..., help="Token from the recovery email")) -> None:
    """Set a new password with a recovery token."""
    ctx = _build_context()
    password = typer.prompt("New password", hide_input=True, confirmation_prompt=True)
    try:
        asyncio.run(ctx.manager.confirm_recovery(token, password))
    except AuthError as e:
        _fail(f"Failed to reset password. The link may have expired: {e}")
    console.print("\n✅ Password reset. Sign in with `beesides login`.")


# =============================================================================
# Onboarding
# =============================================================================


def _prompt_step(step, current) -> object:
    """Ask for one step's data. Returns None to go back."""
    from onboarding import StepId

    if step.step_id == StepId.IMPORT_LEGACY_RATINGS.value:
        answer = typer.prompt("Imported ratings count (0 to skip, 'b' to go back)", default="0")
        if answer.strip().lower() == "b":
            return None
        count = int(answer) if answer.strip().isdigit() else 0
        return {"imported": count > 0, "source": "rateyourmusic" if count else None, "count": count}

    default = ", ".join(current or [])
    answer = typer.prompt("Comma separated ('b' to go back)", default=default, show_default=bool(default))
    if answer.strip().lower() == "b":
        return None
    return [item.strip() for item in answer.split(",")]


async def _run_onboarding(ctx: _Context) -> None:
    from beesides.config import settings
    from beesides.storage import read_navigation_intent
    from onboarding import OnboardingFlow, resolve_steps

    session = await ctx.manager.initialize()
    if not session.is_authenticated:
        _fail(f"Not signed in (session {session.status.value}). Run `beesides login` first.")

    intent = read_navigation_intent(ctx.intent_store)
    flow = OnboardingFlow(ctx.profiles, resolve_steps(settings.onboarding_steps), ctx.intent_store)
    progress = await flow.start(session.identity.user_id, intent.is_new_user_flow)

    while not progress.ready_to_finalize:
        step = flow.current_step
        console.print(Panel.fit(
            f"[bold]{step.title}[/bold]",
            title=f"Step {progress.current_index + 1} of {len(progress.steps)}",
            border_style="green",
        ))
        value = _prompt_step(step, progress.data.get(step.step_id))
        if value is None:
            progress = flow.back()
            continue
        try:
            flow.update_step_data(step.step_id, value)
            result = await flow.advance()
        except ValidationError as e:
            console.print(f"[red]{e}[/red]")
            continue
        if not result.persisted:
            console.print("[yellow]Couldn't save this step yet; it will be retried.[/yellow]")
        progress = flow.progress

    while True:
        try:
            await flow.finalize()
            break
        except PersistenceError as e:
            console.print(f"[red]Failed to save your profile: {e}[/red]")
            if not typer.confirm("Retry?", default=True):
                raise typer.Exit(1)
        except (ValidationError, InvalidTransition) as e:
            _fail(str(e))

    await ctx.manager.wait_idle()


@app.command()
def onboard() -> None:
    """Run or resume onboarding for the signed-in user."""
    ctx = _build_context()
    try:
        asyncio.run(_run_onboarding(ctx))
    except PersistenceError as e:
        _fail(f"Failed to load onboarding progress: {e}")
    console.print("\n[green]✅ Onboarding complete. Enjoy Beesides![/green]")


@app.command("skip-onboarding")
def skip_onboarding() -> None:
    """Leave onboarding for now. Saved steps resume with `beesides onboard`."""
    from beesides.storage import leave_onboarding

    ctx = _build_context()
    dropped = leave_onboarding(ctx.intent_store)
    if dropped is NavigationIntent.NONE:
        console.print("\n[dim]No onboarding in progress.[/dim]")
        return
    console.print("\n[dim]Onboarding skipped. Run `beesides onboard` to pick it up again.[/dim]")


@app.command()
def version() -> None:
    """Show version information."""
    from beesides import __version__

    console.print(f"Beesides version {__version__}")


if __name__ == "__main__":
    app()
