"""
Tests for the anchoring worker: retries, backoff and terminal failure.
"""

import pytest
from fastapi import BackgroundTasks
from sqlmodel import select

from app.db.core import engine
from app.db.schema import (
    AuditLog, ProductStatus, VerificationStatus, AnchoringStatus
)
from app.services.oracle import LocalComplianceOracle
from app.services.workflow import AnchoringService, resume_pending_anchors
from tests.helpers import audit_actions


class FlakyOracle(LocalComplianceOracle):
    """Fails the first `failures` anchor calls."""

    def __init__(self, failures):
        super().__init__(secret="flaky-secret")
        self.failures = failures
        self.calls = 0

    def anchor_to_polygon(self, data_hash):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("chain unavailable")
        return super().anchor_to_polygon(data_hash)


class ReceiptlessOracle(LocalComplianceOracle):
    def anchor_to_polygon(self, data_hash):
        return {"chain": "Polygon"}


@pytest.fixture
def minting_product(make_product, workflow, users):
    """A submitted passport locked for anchoring, worker not yet run."""
    product = make_product()
    workflow.submit_for_review(users["supplier"], product.id)
    return workflow.mark_minting(product)


def anchoring_service(session, oracle, sleeps):
    return AnchoringService(
        session,
        oracle,
        max_attempts=3,
        backoff_seconds=1.0,
        backoff_max_seconds=3.0,
        sleep=sleeps.append,
    )


class TestRetries:
    """Transient oracle failures are retried with exponential backoff."""

    def test_recovers_after_transient_failures(self, session, minting_product, users):
        sleeps = []
        oracle = FlakyOracle(failures=2)

        product = anchoring_service(session, oracle, sleeps).anchor_product_on_chain(
            minting_product.id, users["auditor"].id)

        assert sleeps == [1.0, 2.0]
        assert oracle.calls == 3
        assert product.anchoring_status == AnchoringStatus.ANCHORED
        assert product.anchor_attempts == 3
        assert product.status == ProductStatus.PUBLISHED
        assert product.is_minting is False

    def test_backoff_is_capped(self, session):
        service = AnchoringService(
            session, LocalComplianceOracle(secret="x"),
            backoff_seconds=2.0, backoff_max_seconds=60.0, sleep=lambda _: None)

        assert service.backoff_delay(0) == 2.0
        assert service.backoff_delay(3) == 16.0
        assert service.backoff_delay(10) == 60.0


class TestTerminalFailure:
    """Exhausted retries release the passport instead of leaving it stuck."""

    def test_marks_failed_and_releases_lock(self, session, minting_product, users):
        sleeps = []

        product = anchoring_service(session, FlakyOracle(failures=99), sleeps).anchor_product_on_chain(
            minting_product.id, users["auditor"].id)

        assert sleeps == [1.0, 2.0]
        assert product.anchoring_status == AnchoringStatus.FAILED
        assert product.is_minting is False
        assert product.anchor_attempts == 3
        assert "chain unavailable" in product.anchor_error
        assert product.verification_status == VerificationStatus.PENDING
        assert product.status == ProductStatus.DRAFT
        assert product.blockchain_proof is None
        assert audit_actions(session, product.id)[-1] == "product.anchoring.failed"

    def test_failed_anchor_can_be_approved_again(self, session, workflow, minting_product, users):
        anchoring_service(session, FlakyOracle(failures=99), []).anchor_product_on_chain(
            minting_product.id, users["auditor"].id)

        product = workflow.approve_passport(users["auditor"], minting_product.id)

        assert product.anchoring_status == AnchoringStatus.ANCHORED
        assert product.status == ProductStatus.PUBLISHED

    def test_receipt_without_transaction_is_a_failure(self, session, minting_product, users):
        product = anchoring_service(
            session, ReceiptlessOracle(secret="x"), []).anchor_product_on_chain(
            minting_product.id, users["auditor"].id)

        assert product.anchoring_status == AnchoringStatus.FAILED
        assert "transaction hash" in product.anchor_error

    def test_skips_products_not_pending(self, session, make_product, users):
        product = make_product()
        oracle = FlakyOracle(failures=0)

        result = anchoring_service(session, oracle, []).anchor_product_on_chain(
            product.id, users["auditor"].id)

        assert result.anchoring_status == AnchoringStatus.NONE
        assert oracle.calls == 0


class TestScheduling:
    """Approval hands the anchor to a background task."""

    def test_approve_schedules_background_anchor(self, session, workflow, make_product, users):
        product = make_product()
        workflow.submit_for_review(users["supplier"], product.id)
        background_tasks = BackgroundTasks()

        approved = workflow.approve_passport(users["auditor"], product.id, background_tasks)

        assert approved.is_minting is True
        assert approved.anchoring_status == AnchoringStatus.PENDING
        assert approved.verification_status == VerificationStatus.PENDING
        assert len(background_tasks.tasks) == 1

        # Approving again while minting changes nothing
        workflow.approve_passport(users["auditor"], product.id, background_tasks)
        assert len(background_tasks.tasks) == 1

        task = background_tasks.tasks[0]
        task.func(*task.args, **task.kwargs)

        session.refresh(approved)
        assert approved.status == ProductStatus.PUBLISHED
        assert approved.anchoring_status == AnchoringStatus.ANCHORED

    def test_resume_pending_anchors(self, session, minting_product, oracle):
        resumed = resume_pending_anchors(engine, oracle)

        assert resumed == 1
        session.refresh(minting_product)
        assert minting_product.anchoring_status == AnchoringStatus.ANCHORED

        log = session.exec(
            select(AuditLog).where(AuditLog.action == "product.anchored")).one()
        assert log.user_id == "system"
