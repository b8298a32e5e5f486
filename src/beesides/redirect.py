"""
Redirect Policy.

Pure decision consumed by routing glue. Given the session, whether the
profile finished onboarding, the navigation intent and the kind of view
being entered, say whether to render it or send the user elsewhere.

Never redirects while the first session check is still resolving; that is
what caused login/onboarding flicker on page load. A re-check of an
already initialized session keeps public views rendered.
"""

from enum import Enum

from beesides.models import NavigationIntent, Session, SessionStatus


class View(Enum):
    """Kind of view the user is navigating to."""
    PUBLIC = "public"           # landing, login, register, reset-password
    PROTECTED = "protected"     # anything that needs a signed-in user
    ONBOARDING = "onboarding"


class Decision(Enum):
    ALLOW = "allow"
    TO_LOGIN = "to_login"
    TO_ONBOARDING = "to_onboarding"
    WAIT = "wait"               # show a loading affordance, do not redirect
    RETRY = "retry"             # identity service failed; show retry banner


def decide(
    session: Session,
    onboarding_completed: bool | None,
    intent: NavigationIntent = NavigationIntent.NONE,
    target: View = View.PROTECTED,
) -> Decision:
    """
    Decide what to do with a navigation.

    Args:
        session: Current session snapshot
        onboarding_completed: Profile completion signal; None while unknown
        intent: Why the user is navigating (from the intent flags)
        target: Kind of view being entered

    Returns:
        Decision for the routing glue
    """
    if session.is_resolving:
        if not session.initialized:
            return Decision.WAIT
        return Decision.ALLOW if target == View.PUBLIC else Decision.WAIT

    if session.status == SessionStatus.FAILED:
        return Decision.ALLOW if target == View.PUBLIC else Decision.RETRY

    if session.status == SessionStatus.ANONYMOUS:
        if target == View.PUBLIC:
            return Decision.ALLOW
        # A brand-new account's session may not have propagated yet
        if target == View.ONBOARDING and intent.wants_onboarding:
            return Decision.ALLOW
        return Decision.TO_LOGIN

    if session.status == SessionStatus.AUTHENTICATED:
        if onboarding_completed is None:
            return Decision.WAIT
        if not onboarding_completed and target != View.ONBOARDING:
            return Decision.TO_ONBOARDING

    return Decision.ALLOW
