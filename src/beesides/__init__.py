"""
Beesides - Session lifecycle and onboarding core for the Beesides music app.

Components:
- Session: single authoritative auth state, single-flight checks, recovery
- Redirect: pure routing decision from session + onboarding signals
- Onboarding: resumable multi-step wizard (see the `onboarding` package)
"""

__version__ = "1.0.0"
