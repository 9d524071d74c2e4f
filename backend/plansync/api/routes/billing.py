"""Billing routes for Stripe integration."""
from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from plansync.api.deps import get_current_user, get_engine
from plansync.billing.reconciliation import ReconciliationEngine
from plansync.core.errors import ProviderUnavailable, VerificationFailure
from plansync.core.logging import get_logger
from plansync.db.models.user import User
from plansync.schemas.billing import (
    BillingProfileOut,
    CheckoutOut,
    CheckoutRequest,
    PlanOut,
    PortalOut,
    UpgradeOut,
)

router = APIRouter(prefix="/billing", tags=["billing"])

logger = get_logger(__name__)


def billing_profile(user: User) -> BillingProfileOut:
    return BillingProfileOut(
        id=user.id,
        email=user.email,
        name=user.name,
        provider=user.provider,
        subscription_status=user.subscription_status,
        current_plan_id=user.current_plan_id,
        current_plan_kind=user.current_plan_kind,
        subscription_expires_at=user.subscription_expires_at,
        has_billing_account=bool(user.stripe_customer_id),
        is_free_trial_eligible=user.is_free_trial_eligible,
        has_used_free_trial=user.has_used_free_trial,
        last_login_at=user.last_login_at,
    )


# Webhook is public: Stripe authenticates with the signature header, which is
# computed over the exact raw body, so the body is read unparsed.
@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    engine: ReconciliationEngine = Depends(get_engine),
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
):
    payload = await request.body()

    try:
        event = await run_in_threadpool(engine.handle_provider_event, payload, stripe_signature)
    except VerificationFailure as e:
        logger.warning(f"Webhook rejected: {e.message}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": e.message})
    except ProviderUnavailable as e:
        # Transient: let Stripe redeliver
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": e.message})

    return {"received": True, "event_type": event.type}


@router.get("/plans", response_model=list[PlanOut])
def get_active_plans(engine: ReconciliationEngine = Depends(get_engine)) -> list[PlanOut]:
    return [PlanOut.model_validate(plan) for plan in engine.list_plans()]


@router.post("/checkout", response_model=CheckoutOut)
def create_checkout_session(
    body: CheckoutRequest,
    user: User = Depends(get_current_user),
    engine: ReconciliationEngine = Depends(get_engine),
) -> CheckoutOut:
    session = engine.start_checkout(user, body.plan_id)
    return CheckoutOut(session_id=session.session_id, url=session.url)


@router.post("/upgrade-to-yearly", response_model=UpgradeOut)
def upgrade_to_yearly(
    user: User = Depends(get_current_user),
    engine: ReconciliationEngine = Depends(get_engine),
) -> UpgradeOut:
    return UpgradeOut(**engine.upgrade_to_yearly(user))


@router.post("/portal", response_model=PortalOut)
def create_portal_session(
    user: User = Depends(get_current_user),
    engine: ReconciliationEngine = Depends(get_engine),
) -> PortalOut:
    return PortalOut(url=engine.manage_portal(user))


@router.post("/free-trial", response_model=BillingProfileOut)
def start_free_trial(
    user: User = Depends(get_current_user),
    engine: ReconciliationEngine = Depends(get_engine),
) -> BillingProfileOut:
    return billing_profile(engine.start_free_trial(user))
