"""FastAPI dependencies: principals, settings and outbound clients.

Customers and internal staff authenticate with bearer session tokens
stored in ``linescout_sessions``. Outbound clients are built from the
loaded configuration here so tests can swap them through
``app.dependency_overrides``.
"""

from datetime import UTC, datetime

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from linescout.config import LineScoutConfig, get_config
from linescout.db.connection import get_db
from linescout.db.models import Agent, AuthSession, User, parse_iso
from linescout.errors import AuthenticationError, ForbiddenError
from linescout.services.ai_gateway import AIGateway
from linescout.services.notifications import Notifier
from linescout.services.payment_providers import PayPalClient, PaystackClient
from linescout.services.settings_service import PlatformSettings, SettingsService


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _active_session(db: Session, token: str | None, principal_type: str) -> AuthSession | None:
    if not token:
        return None
    session = db.execute(
        select(AuthSession).where(
            AuthSession.token == token,
            AuthSession.principal_type == principal_type,
        )
    ).scalar_one_or_none()
    if session is None or session.revoked_at:
        return None
    expires = parse_iso(session.expires_at)
    if expires is not None and expires <= datetime.now(UTC):
        return None
    return session


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> User | None:
    """Signed-in customer, or None for anonymous requests."""
    session = _active_session(db, _bearer_token(request), "user")
    if session is None:
        return None
    return db.get(User, session.principal_id)


def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise AuthenticationError()
    return user


def get_current_agent(request: Request, db: Session = Depends(get_db)) -> Agent:
    session = _active_session(db, _bearer_token(request), "agent")
    agent = db.get(Agent, session.principal_id) if session else None
    if agent is None or not agent.is_active:
        raise AuthenticationError()
    return agent


def require_admin(agent: Agent = Depends(get_current_agent)) -> Agent:
    if not agent.is_admin:
        raise ForbiddenError("Admin access required.")
    return agent


def get_app_config() -> LineScoutConfig:
    return get_config()


def get_platform_settings(db: Session = Depends(get_db)) -> PlatformSettings:
    """Settings snapshot loaded once per request."""
    return SettingsService(db).load()


def get_ai_gateway(config: LineScoutConfig = Depends(get_app_config)) -> AIGateway:
    return AIGateway(config.gateway)


def get_notifier(config: LineScoutConfig = Depends(get_app_config)) -> Notifier:
    return Notifier(config.mail, config.push)


def get_paystack(config: LineScoutConfig = Depends(get_app_config)) -> PaystackClient:
    return PaystackClient(config.paystack)


def get_paypal(config: LineScoutConfig = Depends(get_app_config)) -> PayPalClient:
    return PayPalClient(config.paypal)
