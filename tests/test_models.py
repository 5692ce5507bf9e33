from loan_review.models.application_review import ApplicationReview
from loan_review.models.loan_application import LoanApplication
from loan_review.models.reactivation_request import ReactivationRequest
from loan_review.models.reviewer_missed_deadline import ReviewerMissedDeadline
from loan_review.models.user import User


def _constraint_names(model) -> set[str]:
    return {getattr(c, "name", "") for c in model.__table__.constraints}


def test_user_constraints_present() -> None:
    names = _constraint_names(User)
    assert "uq_users_org_email" in names
    assert "ck_users_role" in names
    assert "ck_users_missed_deadlines_nonneg" in names


def test_loan_application_is_version_checked() -> None:
    mapper = LoanApplication.__mapper__
    assert mapper.version_id_col is LoanApplication.__table__.c.version
    names = _constraint_names(LoanApplication)
    assert "ck_loan_app_status" in names
    assert "ck_loan_app_threshold_nonneg" in names


def test_reviewer_decides_once_per_application() -> None:
    assert "uq_application_reviews_reviewer" in _constraint_names(ApplicationReview)


def test_missed_deadline_counted_once_per_review_cycle() -> None:
    assert "uq_reviewer_missed_deadlines_cycle" in _constraint_names(ReviewerMissedDeadline)


def test_one_pending_reactivation_request_per_reviewer() -> None:
    index = next(
        ix
        for ix in ReactivationRequest.__table__.indexes
        if ix.name == "uq_reactivation_requests_one_pending"
    )
    assert index.unique
    assert [col.name for col in index.columns] == ["reviewer_id"]
    assert str(index.dialect_options["postgresql"]["where"]) == "status = 'pending'"


def test_reactivation_text_minimums_enforced_in_schema() -> None:
    names = _constraint_names(ReactivationRequest)
    assert "ck_reactivation_requests_reason_len" in names
    assert "ck_reactivation_requests_clarification_len" in names
