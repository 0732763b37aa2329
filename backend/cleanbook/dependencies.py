from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.pricing.config_loader import PricingConfig, load_pricing_config
from cleanbook.infra.db import get_db_session
from cleanbook.infra.logging import update_log_context
from cleanbook.infra.notifications import NotificationAdapter, resolve_notification_adapter
from cleanbook.settings import settings

ROLE_MEMBER = "member"
ROLE_CLEANER = "cleaner"
ROLE_ADMIN = "admin"
ROLES = {ROLE_MEMBER, ROLE_CLEANER, ROLE_ADMIN}


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def get_actor(request: Request) -> Actor:
    """Identity asserted by the upstream gateway; the core never authenticates on its own."""
    actor_id = (request.headers.get("X-Actor-Id") or "").strip()
    role = (request.headers.get("X-Actor-Role") or ROLE_MEMBER).strip().lower()
    if not actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing actor")
    if role not in ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown actor role")
    update_log_context(actor_id=actor_id, actor_role=role)
    return Actor(actor_id=actor_id, role=role)


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor


async def get_pricing_config(session: AsyncSession = Depends(get_db_session)) -> PricingConfig:
    return await load_pricing_config(session)


def get_notifier(request: Request) -> NotificationAdapter:
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        notifier = resolve_notification_adapter(getattr(request.app.state, "app_settings", settings))
        request.app.state.notifier = notifier
    return notifier
