import random
from datetime import timedelta

import pytest

from loan_review.core.settings import settings
from loan_review.models.loan_application import LoanApplication
from loan_review.models.user import User
from loan_review.services import assignment
from loan_review.services.workflow_errors import InsufficientReviewers, InvalidState, RoleRequired
from conftest import (
    NOW,
    FakeAsyncSession,
    FakeResult,
    caller_for,
    entity_handler,
    make_admin,
    make_application,
    make_reviewer,
    sequence_handler,
)


def _session(applications, pool, extra=None) -> FakeAsyncSession:
    db = FakeAsyncSession()
    if isinstance(applications, LoanApplication):
        db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=applications)))
    else:
        db.on_execute(entity_handler(LoanApplication, FakeResult(items=list(applications))))
    db.on_execute(entity_handler(User, FakeResult(items=list(pool))))
    if extra:
        db.on_execute(sequence_handler(extra))
    return db


@pytest.mark.asyncio
async def test_assign_builds_panel_threshold_and_deadline(tenant_ctx):
    pool = [make_reviewer() for _ in range(5)]
    application = make_application()
    db = _session(application, pool)

    result = await assignment.assign(
        db, tenant_ctx, application.id, caller=caller_for(make_admin()), now=NOW,
        rng=random.Random(7),
    )

    assert application.status == "under_review"
    assert 2 <= len(result.reviewer_ids) <= 3
    assert len(set(result.reviewer_ids)) == len(result.reviewer_ids)
    assert result.approval_threshold == 2
    assert application.review_deadline == NOW + timedelta(hours=72)
    assert application.assigned_at == NOW
    assert [review.reviewer_id for review in application.reviews] == result.reviewer_ids
    assert [review.position for review in application.reviews] == list(range(len(result.reviewer_ids)))
    assert all(review.verdict == "pending" for review in application.reviews)
    assert {r.id for r in pool} >= set(result.reviewer_ids)


@pytest.mark.asyncio
async def test_assign_with_single_reviewer_fails_and_leaves_application_pending(tenant_ctx):
    application = make_application()
    db = _session(application, [make_reviewer()])

    with pytest.raises(InsufficientReviewers) as excinfo:
        await assignment.assign(
            db, tenant_ctx, application.id, caller=caller_for(make_admin()), now=NOW
        )

    assert excinfo.value.details == {"available": 1, "required": 2}
    assert application.status == "pending"
    assert application.reviews == []
    assert application.review_deadline is None


@pytest.mark.asyncio
async def test_assign_is_once_per_review_cycle(tenant_ctx):
    r1, r2 = make_reviewer(), make_reviewer()
    application = make_application(reviewers=[r1, r2])
    db = _session(application, [r1, r2, make_reviewer()])

    with pytest.raises(InvalidState):
        await assignment.assign(
            db, tenant_ctx, application.id, caller=caller_for(make_admin()), now=NOW
        )
    assert [review.reviewer_id for review in application.reviews] == [r1.id, r2.id]


@pytest.mark.asyncio
async def test_assign_requires_admin(tenant_ctx):
    reviewer = make_reviewer()
    db = _session(make_application(), [reviewer, make_reviewer()])
    with pytest.raises(RoleRequired):
        await assignment.assign(
            db, tenant_ctx, make_application().id, caller=caller_for(reviewer), now=NOW
        )
    assert db.executed == []


@pytest.mark.parametrize("pool_size", [2, 3, 4, 7])
def test_threshold_never_exceeds_panel_size(pool_size):
    pool = [make_reviewer() for _ in range(pool_size)]
    rng = random.Random(pool_size)
    for _ in range(50):
        panel, threshold = assignment.select_reviewers(pool, rng)
        assert 1 <= threshold <= len(panel)
        assert settings.min_reviewers_per_application <= len(panel) <= settings.max_reviewers_per_application
        assert len({reviewer.id for reviewer in panel}) == len(panel)


@pytest.mark.asyncio
async def test_assign_pending_backlog_assigns_each_application(tenant_ctx):
    pool = [make_reviewer() for _ in range(3)]
    applications = [make_application(), make_application()]
    db = _session(applications, pool, extra=[FakeResult(scalar=4)])

    report = await assignment.assign_pending_backlog(
        db, tenant_ctx, caller=caller_for(make_admin()), now=NOW, rng=random.Random(1)
    )

    assert report.pool_size == 3
    assert [item.application_id for item in report.assigned] == [a.id for a in applications]
    assert report.remaining_unassigned == 4
    assert all(a.status == "under_review" for a in applications)


@pytest.mark.asyncio
async def test_assign_pending_backlog_checks_pool_up_front(tenant_ctx):
    db = _session([make_application()], [make_reviewer()])
    with pytest.raises(InsufficientReviewers):
        await assignment.assign_pending_backlog(
            db, tenant_ctx, caller=caller_for(make_admin()), now=NOW
        )
    assert len(db.executed) == 1


@pytest.mark.asyncio
async def test_assignment_statistics_counts(tenant_ctx):
    pool = [make_reviewer() for _ in range(4)]
    db = FakeAsyncSession()
    db.on_execute(entity_handler(User, FakeResult(items=pool)))
    db.on_execute(
        sequence_handler(
            [
                FakeResult(rows=[("pending", 5), ("under_review", 3), ("needs_admin_decision", 1)]),
                FakeResult(scalar=2),
            ]
        )
    )
    stats = await assignment.assignment_statistics(
        db, tenant_ctx, caller=caller_for(make_admin()), now=NOW
    )
    assert stats.active_reviewers == 4
    assert stats.unassigned_applications == 5
    assert stats.under_review_applications == 3
    assert stats.overdue_applications == 2
    assert stats.awaiting_admin_decision == 1


@pytest.mark.parametrize("limit, expected", [(None, 10), (4, 4), (50, 10)])
@pytest.mark.asyncio
async def test_backlog_batch_never_exceeds_configured_size(tenant_ctx, monkeypatch, limit, expected):
    monkeypatch.setattr(settings, "assignment_batch_size", 10)
    db = _session([], [make_reviewer(), make_reviewer()], extra=[FakeResult(scalar=0)])

    await assignment.assign_pending_backlog(
        db, tenant_ctx, caller=caller_for(make_admin()), now=NOW, limit=limit
    )

    backlog_query = db.executed[1]
    limits = [v for v in backlog_query.compile().params.values() if isinstance(v, int)]
    assert limits == [expected]
