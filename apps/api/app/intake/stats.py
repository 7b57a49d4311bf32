from __future__ import annotations

from collections import Counter
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.intake.models import ClientIntake, utcnow
from app.intake.schemas import IntakeStats, PriorityCount, RamisStatusCount, ServiceCount
from app.intake.validation import DIRECT_TAX, INDIRECT_TAX


RECENT_WINDOW = timedelta(days=7)


class IntakeStatsService:
    def dashboard(self, session: Session) -> IntakeStats:
        active = ClientIntake.deleted_at.is_(None)

        priority_rows = session.execute(
            select(ClientIntake.client_priority, func.count())
            .where(active)
            .group_by(ClientIntake.client_priority)
            .order_by(ClientIntake.client_priority)
        ).all()
        ramis_rows = session.execute(
            select(ClientIntake.ramis_status, func.count())
            .where(active)
            .group_by(ClientIntake.ramis_status)
            .order_by(ClientIntake.ramis_status)
        ).all()
        recent_clients = session.scalar(
            select(func.count()).select_from(ClientIntake).where(active, ClientIntake.submitted_at >= utcnow() - RECENT_WINDOW)
        )

        # service lists live in JSON columns, so the breakdown is tallied here rather than in SQL
        service_lists = session.scalars(select(ClientIntake.services_selected).where(active)).all()
        services: Counter[str] = Counter()
        direct_tax = indirect_tax = tax_clients = 0
        for selected in service_lists:
            selected = selected or []
            services.update(dict.fromkeys(selected, 1))
            has_direct = DIRECT_TAX in selected
            has_indirect = INDIRECT_TAX in selected
            direct_tax += int(has_direct)
            indirect_tax += int(has_indirect)
            tax_clients += int(has_direct or has_indirect)

        return IntakeStats(
            total_clients=len(service_lists),
            tax_clients=tax_clients,
            service_breakdown=[
                ServiceCount(service=name, count=count)
                for name, count in sorted(services.items(), key=lambda item: (-item[1], item[0]))
            ],
            priority_distribution=[PriorityCount(priority=priority, count=count) for priority, count in priority_rows],
            ramis_status_breakdown=[RamisStatusCount(status=ramis, count=count) for ramis, count in ramis_rows],
            recent_clients=int(recent_clients or 0),
            direct_tax_count=direct_tax,
            indirect_tax_count=indirect_tax,
        )


intake_stats_service = IntakeStatsService()
