import pytest

from loan_review.models.audit_log import AuditLog
from loan_review.models.user import User
from loan_review.services import reviewer_directory
from loan_review.services.workflow_errors import (
    AccountFrozen,
    InvalidInput,
    NotFound,
    RoleRequired,
)
from conftest import (
    NOW,
    FakeAsyncSession,
    FakeResult,
    caller_for,
    entity_handler,
    make_admin,
    make_reviewer,
    sequence_handler,
)


def _session(reviewer) -> FakeAsyncSession:
    return FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=reviewer)))


@pytest.mark.asyncio
async def test_manual_freeze_is_idempotent(tenant_ctx):
    reviewer = make_reviewer()
    admin = make_admin()
    db = _session(reviewer)

    assert await reviewer_directory.freeze(
        db, tenant_ctx, reviewer.id, now=NOW, caller=caller_for(admin)
    )
    assert not await reviewer_directory.freeze(
        db, tenant_ctx, reviewer.id, now=NOW, caller=caller_for(admin)
    )

    assert reviewer.is_active is False
    assert reviewer.is_verified is False
    assert reviewer.frozen_at == NOW
    logs = db.added_of(AuditLog)
    assert len(logs) == 1
    assert logs[0].actor_id == admin.id
    assert logs[0].new_value["reason"] == "manual"


@pytest.mark.asyncio
async def test_freeze_by_reviewer_is_forbidden(tenant_ctx):
    reviewer = make_reviewer()
    with pytest.raises(RoleRequired):
        await reviewer_directory.freeze(
            _session(reviewer), tenant_ctx, reviewer.id, now=NOW, caller=caller_for(reviewer)
        )
    assert reviewer.is_active is True


@pytest.mark.asyncio
async def test_unknown_reviewer_is_not_found(tenant_ctx):
    with pytest.raises(NotFound):
        await reviewer_directory.get_reviewer(_session(None), tenant_ctx, make_reviewer().id)


@pytest.mark.asyncio
async def test_verify_sets_verification(tenant_ctx):
    reviewer = make_reviewer(is_verified=False)
    admin = make_admin()
    db = _session(reviewer)

    verified = await reviewer_directory.verify(
        db, tenant_ctx, reviewer.id, caller=caller_for(admin), now=NOW
    )

    assert verified.is_verified is True
    assert verified.verified_at == NOW
    assert verified.verified_by_id == admin.id


@pytest.mark.asyncio
async def test_verify_refuses_frozen_reviewer(tenant_ctx):
    reviewer = make_reviewer(is_active=False, is_verified=False)
    with pytest.raises(AccountFrozen):
        await reviewer_directory.verify(
            _session(reviewer), tenant_ctx, reviewer.id, caller=caller_for(make_admin()), now=NOW
        )
    assert reviewer.is_verified is False


@pytest.mark.asyncio
async def test_statistics_rates(tenant_ctx):
    reviewer = make_reviewer(
        total_reviewed=8, approved_count=6, rejected_count=2, missed_deadline_count=1
    )
    db = _session(reviewer).on_execute(
        sequence_handler([FakeResult(scalar=2), FakeResult(scalar=1)])
    )

    stats = await reviewer_directory.get_reviewer_statistics(
        db, tenant_ctx, reviewer.id, caller=caller_for(reviewer)
    )

    assert stats.success_rate == 0.75
    assert stats.missed_deadlines == 2
    assert stats.missed_deadline_count == 1
    assert stats.deadline_compliance == 80.0
    assert stats.pending_reviews == 1


@pytest.mark.asyncio
async def test_statistics_of_another_reviewer_forbidden(tenant_ctx):
    reviewer, other = make_reviewer(), make_reviewer()
    with pytest.raises(RoleRequired):
        await reviewer_directory.get_reviewer_statistics(
            _session(other), tenant_ctx, other.id, caller=caller_for(reviewer)
        )


@pytest.mark.asyncio
async def test_list_reviewers_pages_with_total(tenant_ctx):
    reviewers = [make_reviewer(), make_reviewer()]
    db = FakeAsyncSession()
    db.on_execute(entity_handler(User, FakeResult(items=reviewers)))
    db.on_execute(sequence_handler([FakeResult(scalar=7)]))

    items, total = await reviewer_directory.list_reviewers(
        db, tenant_ctx, caller=caller_for(make_admin()), status="frozen", search="ann", page=2,
        page_size=2,
    )

    assert items == reviewers
    assert total == 7
    listing = str(db.executed[1])
    assert "users.is_active" in listing
    assert "LIMIT" in listing and "OFFSET" in listing


@pytest.mark.asyncio
async def test_list_reviewers_rejects_unknown_status(tenant_ctx):
    with pytest.raises(InvalidInput):
        await reviewer_directory.list_reviewers(
            FakeAsyncSession(), tenant_ctx, caller=caller_for(make_admin()), status="sleeping"
        )
