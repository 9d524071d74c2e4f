"""
API dependencies (auth, shared DI).

OAuth bridge auth:
- The OAuth layer in front of this service completes Google/GitHub/Microsoft
  login and forwards the local user id in X-User-Id
- Requests must carry the shared bridge token as a Bearer token
- Billing collaborators (gateway, engine) are built here so tests can
  override them
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from plansync.billing import records
from plansync.billing.gateway import StripeGateway
from plansync.billing.reconciliation import ReconciliationEngine
from plansync.core.config import settings
from plansync.db.session import get_db
from plansync.db.models.user import User

_gateway = StripeGateway(webhook_secret=settings.STRIPE_WEBHOOK_SECRET)


def get_gateway() -> StripeGateway:
    return _gateway


def get_engine(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
) -> ReconciliationEngine:
    return ReconciliationEngine(db, gateway, settings)


def require_bridge_token(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
    """Reject requests that did not come through the OAuth layer."""
    bridge_token = settings.AUTH_BRIDGE_TOKEN

    if not bridge_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Auth not configured",
        )

    if not authorization or authorization.strip() != f"Bearer {bridge_token}":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization token",
        )


def get_current_user(
    _: None = Depends(require_bridge_token),
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> User:
    """Resolve the authenticated user forwarded by the OAuth layer."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header required",
        )

    user = records.get_user(db, x_user_id.strip())
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
