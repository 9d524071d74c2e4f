"""User sync and profile endpoints."""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from plansync.api.deps import get_current_user, get_engine, require_bridge_token
from plansync.api.routes.billing import billing_profile
from plansync.billing.reconciliation import ReconciliationEngine
from plansync.core.logging import get_logger
from plansync.db.models.user import User
from plansync.db.session import get_db
from plansync.schemas.billing import BillingProfileOut, UserSyncIn, UserSyncOut

router = APIRouter(prefix="/users", tags=["users"])

logger = get_logger(__name__)


@router.post("/sync", response_model=UserSyncOut, dependencies=[Depends(require_bridge_token)])
def sync_user(payload: UserSyncIn, db: Session = Depends(get_db)) -> UserSyncOut:
    """Create user if not exists, called by the OAuth layer after every login."""
    now = datetime.now(timezone.utc)
    user = db.execute(
        select(User).where(User.provider == payload.provider, User.provider_id == payload.provider_id)
    ).scalar_one_or_none()
    if user:
        user.email = payload.email.lower()
        user.name = payload.name
        user.last_login_at = now
        db.commit()
        return UserSyncOut(id=user.id, created=False)

    # Billing fields start at their defaults: no customer, no plan, trial eligible
    user = User(
        email=payload.email.lower(),
        name=payload.name,
        provider=payload.provider,
        provider_id=payload.provider_id,
        last_login_at=now,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered with another provider",
        )
    db.refresh(user)
    logger.info(f"Created user {user.id} via {payload.provider}")
    return UserSyncOut(id=user.id, created=True)


@router.get("/me", response_model=BillingProfileOut)
def get_me(
    user: User = Depends(get_current_user),
    engine: ReconciliationEngine = Depends(get_engine),
) -> BillingProfileOut:
    return billing_profile(engine.expire_trial_if_due(user))
