"""Read-only lookups over the plans table."""
from sqlalchemy import select
from sqlalchemy.orm import Session

from plansync.billing.types import PlanKind
from plansync.core.errors import NotFound
from plansync.db.models.plan import Plan


class PlanCatalog:
    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, plan_id: str, active_only: bool = True) -> Plan:
        stmt = select(Plan).where(Plan.id == plan_id)
        if active_only:
            stmt = stmt.where(Plan.is_active.is_(True))
        plan = self.db.execute(stmt).scalar_one_or_none()
        if plan is None:
            raise NotFound(f"Plan {plan_id} not found")
        return plan

    def find_active_by_kind(self, kind: PlanKind) -> Plan:
        # Newest first in case an operator left two active plans of a kind
        plan = self.db.execute(
            select(Plan)
            .where(Plan.kind == kind, Plan.is_active.is_(True))
            .order_by(Plan.created_at.desc(), Plan.id)
            .limit(1)
        ).scalar_one_or_none()
        if plan is None:
            raise NotFound(f"No active {kind.value} plan")
        return plan

    def find_by_price_id(self, price_id: str) -> Plan | None:
        """Match retired plans too; a live subscription may still bill on them."""
        return self.db.execute(
            select(Plan)
            .where(Plan.stripe_price_id == price_id)
            .order_by(Plan.is_active.desc(), Plan.id)
            .limit(1)
        ).scalar_one_or_none()

    def list_active(self) -> list[Plan]:
        return list(
            self.db.execute(
                select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.kind, Plan.id)
            ).scalars()
        )
