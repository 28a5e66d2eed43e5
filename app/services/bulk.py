import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from fastapi import BackgroundTasks, HTTPException
from loguru import logger
from sqlmodel import Session

from app.core.audit import log_audit_event, MULTIPLE_ENTITIES
from app.core.exceptions import StateConflictError
from app.core.permissions import Action, check_permission
from app.db.schema import User, Product, ProductStatus, VerificationStatus
from app.models.bulk import BulkItemResult, BulkResult
from app.models.product import BulkProductImport
from app.services.oracle import ComplianceOracle
from app.services.product import ProductService
from app.services.workflow import WorkflowService


def describe_error(exc: Exception) -> str:
    if isinstance(exc, HTTPException):
        detail = exc.detail
        if isinstance(detail, dict) and detail.get("errors"):
            return "; ".join(
                f"{err['field']}: {err['message']}" for err in detail["errors"])
        return str(detail)
    return str(exc) or type(exc).__name__


class BulkService:
    """
    Applies one operation to many products.

    Items are processed one at a time and independently. A failing item is
    rolled back and reported in the result list; it never aborts the batch.
    """

    def __init__(self, session: Session, oracle: Optional[ComplianceOracle] = None):
        self.session = session
        self.products = ProductService(session)
        self.workflow = WorkflowService(session, oracle)

    def _run(
        self,
        operation: str,
        items: Sequence[Any],
        fn: Callable[[Any], Any],
        key: Callable[[int, Any, Any], str]
    ) -> List[BulkItemResult]:
        results = []
        for index, item in enumerate(items):
            try:
                outcome = fn(item)
            except Exception as e:
                self.session.rollback()
                error = describe_error(e)
                logger.warning(f"Bulk {operation} failed for item {key(index, item, None)}: {error}")
                results.append(BulkItemResult(id=key(index, item, None), ok=False, error=error))
                continue
            results.append(BulkItemResult(id=key(index, item, outcome), ok=True))
        return results

    def _summarize(
        self,
        user: User,
        action: str,
        results: List[BulkItemResult]
    ) -> BulkResult:
        succeeded = [r.id for r in results if r.ok]
        if succeeded:
            log_audit_event(
                self.session, action, MULTIPLE_ENTITIES,
                {"count": len(succeeded), "product_ids": succeeded}, user.id)
        return BulkResult(count=len(succeeded), results=results)

    @staticmethod
    def _by_id(index: int, product_id: Any, outcome: Any) -> str:
        return str(product_id)

    # ==========================================================================
    # OPERATIONS
    # ==========================================================================

    def bulk_delete_products(self, user: User, product_ids: List[uuid.UUID]) -> BulkResult:
        def delete(product_id: uuid.UUID) -> None:
            product = self.products.get_product_by_id(product_id, user)
            check_permission(user, Action.PRODUCT_DELETE, product)
            self.session.delete(product)
            self.session.commit()

        results = self._run("delete", product_ids, delete, self._by_id)
        return self._summarize(user, "product.bulk_delete", results)

    def bulk_archive_products(self, user: User, product_ids: List[uuid.UUID]) -> BulkResult:
        def archive(product_id: uuid.UUID) -> None:
            product = self.products.get_product_by_id(product_id, user)
            check_permission(user, Action.PRODUCT_ARCHIVE, product)
            product.status = ProductStatus.ARCHIVED
            self.products.commit_product(product)

        results = self._run("archive", product_ids, archive, self._by_id)
        return self._summarize(user, "product.bulk_archive", results)

    def bulk_submit_for_review(self, user: User, product_ids: List[uuid.UUID]) -> BulkResult:
        results = self._run(
            "submit",
            product_ids,
            lambda product_id: self.workflow.submit_for_review(user, product_id),
            self._by_id,
        )
        return self._summarize(user, "product.bulk_submit", results)

    def bulk_create_products(
        self,
        user: User,
        rows: List[Union[BulkProductImport, Dict[str, Any]]]
    ) -> BulkResult:
        """
        Imports rows as Draft passports. Successful items are keyed by the new
        product id, failed ones by `row:<index>`.
        """
        def create(row: Union[BulkProductImport, Dict[str, Any]]) -> Product:
            values = row.model_dump(exclude_unset=True) if isinstance(row, BulkProductImport) \
                else dict(row)
            values["status"] = ProductStatus.DRAFT
            return self.products.save_product(user, values)

        def key(index: int, row: Any, product: Optional[Product]) -> str:
            return str(product.id) if product is not None else f"row:{index}"

        results = self._run("import", rows, create, key)
        return self._summarize(user, "product.bulk_import", results)

    def bulk_anchor_products(
        self,
        user: User,
        product_ids: List[uuid.UUID],
        background_tasks: Optional[BackgroundTasks] = None
    ) -> BulkResult:
        """
        Locks every eligible product for minting now, then schedules the
        anchors without waiting for them.
        """
        check_permission(user, Action.PRODUCT_APPROVE)

        def lock(product_id: uuid.UUID) -> Product:
            product = self.products.load_product(product_id)
            check_permission(user, Action.PRODUCT_APPROVE, product)
            if product.verification_status != VerificationStatus.PENDING or product.is_minting:
                raise StateConflictError(
                    f"Product {product_id} is not awaiting approval.",
                    product_id=str(product_id),
                )
            return self.workflow.mark_minting(product)

        results = self._run("anchor", product_ids, lock, self._by_id)
        summary = self._summarize(user, "product.bulk_anchor.started", results)

        for result in results:
            if result.ok:
                self.workflow.schedule_anchoring(
                    uuid.UUID(result.id), user.id, background_tasks)
        return summary
