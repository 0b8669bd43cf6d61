from sqlalchemy import select

from casedesk.auth import AgentSession
from casedesk.db import SessionLocal, init_db
from casedesk.models import Case, CasePriority, User, UserRole
from casedesk.services.case_service import create_case
from casedesk.services.user_service import create_user

DEMO_USERS = [
    (1, 'agent.one', 'agent.one@example.com', UserRole.AGENT, 'Tier 1'),
    (2, 'agent.two', 'agent.two@example.com', UserRole.AGENT, 'Tier 1'),
    (3, 'team.lead', 'team.lead@example.com', UserRole.MANAGER, 'Tier 1'),
]

DEMO_CASES = [
    ('DEMO-1001', 'Ada Customer', 'billing', CasePriority.HIGH, 1),
    ('DEMO-1002', 'Ben Customer', 'technical', CasePriority.MEDIUM, 1),
    ('DEMO-1003', 'Cy Customer', 'billing', CasePriority.LOW, 2),
]


def seed(password: str = 'changeme') -> None:
    init_db()
    with SessionLocal() as db:
        for user_id, username, email, role, team in DEMO_USERS:
            if db.get(User, user_id) is None:
                create_user(db, username=username, email=email, password=password, role=role, team=team, user_id=user_id)

        lead = db.get(User, 3)
        session = AgentSession(user_id=lead.id, username=lead.username, role=lead.role)
        for case_number, customer_name, case_type, priority, assignee in DEMO_CASES:
            exists = db.execute(select(Case.id).where(Case.case_number == case_number)).first()
            if exists:
                continue
            create_case(
                db,
                {
                    'case_number': case_number,
                    'customer_name': customer_name,
                    'case_type': case_type,
                    'priority': priority,
                    'assigned_to': assignee,
                },
                session=session,
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
