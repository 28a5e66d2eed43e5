import json
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from fastapi import BackgroundTasks
from fastapi.encoders import jsonable_encoder
from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.core.audit import log_audit_event, SYSTEM_USER
from app.core.config import settings
from app.core.exceptions import (
    NotFoundError, OracleFailure, StateConflictError, ValidationError
)
from app.core.permissions import Action, check_permission
from app.db.schema import (
    User, Company, Product, ProductStatus, VerificationStatus,
    EndOfLifeStatus, AnchoringStatus
)
from app.models.product import (
    ComplianceGap, CustodyStepCreate, CustomsInspectionCreate
)
from app.services.oracle import ComplianceOracle, call_oracle, get_oracle, hash_data
from app.services.product import (
    ProductService, build_submission_checklist, parse_payload
)
from app.services.webhook import WebhookService
from app.utils.qr import generate_passport_qr

DEFAULT_SUSTAINABILITY: Dict[str, Any] = {
    "score": 0,
    "environmental": 0,
    "social": 0,
    "governance": 0,
    "is_compliant": False,
    "summary": "",
    "compliance_summary": "",
}

CHECKLIST_LABELS = {
    "has_base_info": "Name, description and category are required.",
    "has_materials": "At least one material is required.",
    "has_manufacturing": "Manufacturing facility and country are required.",
    "has_lifecycle_data": "Expected lifespan and repairability score are required.",
    "has_compliance_path": "A compliance path must be recorded.",
}

CUSTOMS_TRANSIT_STAGES = {
    "Cleared": "Cleared - Inland Transit ({location})",
    "Detained": "Detained at Customs ({location})",
    "Rejected": "Shipment Rejected at ({location})",
}


def _now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


class WorkflowService:
    """
    Lifecycle transitions of a passport.

    Every operation loads the product, checks the acting user's permission,
    validates the source state, commits the mutation and then writes exactly
    one audit entry (two for recycling).
    """

    def __init__(self, session: Session, oracle: Optional[ComplianceOracle] = None):
        self.session = session
        self.oracle = oracle or get_oracle()
        self.products = ProductService(session)

    # ==========================================================================
    # REVIEW
    # ==========================================================================

    def submit_for_review(self, user: User, product_id: uuid.UUID) -> Product:
        product = self.products.load_product(product_id)
        check_permission(user, Action.PRODUCT_SUBMIT, product)

        if product.verification_status != VerificationStatus.NOT_SUBMITTED:
            raise StateConflictError(
                f"Only unsubmitted passports can be submitted (current: "
                f"{product.verification_status.value}).",
                product_id=str(product_id),
            )

        if settings.enforce_submission_checklist:
            checklist = build_submission_checklist(product).model_dump()
            missing = [key for key, done in checklist.items() if not done]
            if missing:
                raise ValidationError([
                    {"field": key, "message": CHECKLIST_LABELS[key]} for key in missing
                ])

        product.verification_status = VerificationStatus.PENDING
        self.products.commit_product(product)

        log_audit_event(self.session, "passport.submitted", product.id, {}, user.id)
        return product

    def approve_passport(
        self,
        user: User,
        product_id: uuid.UUID,
        background_tasks: Optional[BackgroundTasks] = None
    ) -> Product:
        """
        Locks the passport for anchoring and hands it to the anchoring worker.
        Approving an already verified or in-flight passport changes nothing.
        """
        product = self.products.load_product(product_id)
        check_permission(user, Action.PRODUCT_APPROVE, product)

        if product.verification_status == VerificationStatus.VERIFIED or product.is_minting:
            logger.info(f"Approve ignored for product {product_id}: already verified or minting")
            return product

        if product.verification_status != VerificationStatus.PENDING:
            raise StateConflictError(
                f"Only passports pending review can be approved (current: "
                f"{product.verification_status.value}).",
                product_id=str(product_id),
            )

        self.mark_minting(product)

        log_audit_event(self.session, "passport.approved", product.id, {}, user.id)

        self.schedule_anchoring(product.id, user.id, background_tasks)
        return product

    def mark_minting(self, product: Product) -> Product:
        product.is_minting = True
        product.anchoring_status = AnchoringStatus.PENDING
        product.anchor_attempts = 0
        product.anchor_error = None
        return self.products.commit_product(product)

    def schedule_anchoring(
        self,
        product_id: uuid.UUID,
        user_id: Union[uuid.UUID, str],
        background_tasks: Optional[BackgroundTasks] = None
    ) -> None:
        """
        Queues anchoring after the response is sent. Without a task queue
        (scripts, seeding) the anchor runs inline on this session.
        """
        if background_tasks is None:
            AnchoringService(self.session, self.oracle).anchor_product_on_chain(
                product_id, user_id)
            return

        background_tasks.add_task(
            run_anchoring,
            self.session.get_bind(),
            product_id,
            user_id,
            self.oracle,
        )

    def reject_passport(
        self,
        user: User,
        product_id: uuid.UUID,
        reason: str,
        gaps: Optional[List[Union[ComplianceGap, Dict[str, Any]]]] = None
    ) -> Product:
        product = self.products.load_product(product_id)
        check_permission(user, Action.PRODUCT_REJECT, product)

        if product.verification_status != VerificationStatus.PENDING:
            raise StateConflictError(
                f"Only passports pending review can be rejected (current: "
                f"{product.verification_status.value}).",
                product_id=str(product_id),
            )
        if product.is_minting:
            raise StateConflictError(
                f"Product {product_id} is being anchored and cannot be rejected.")

        gap_list = [
            parse_payload(ComplianceGap, gap).model_dump() for gap in (gaps or [])
        ]

        sustainability = dict(product.sustainability or DEFAULT_SUSTAINABILITY)
        sustainability["compliance_summary"] = reason
        sustainability["gaps"] = gap_list

        product.sustainability = sustainability
        product.verification_status = VerificationStatus.FAILED
        product.anchoring_status = AnchoringStatus.NONE
        self.products.commit_product(product)

        log_audit_event(
            self.session, "passport.rejected", product.id,
            {"reason": reason, "gaps": gap_list}, user.id)
        return product

    def resolve_compliance_issue(self, user: User, product_id: uuid.UUID) -> Product:
        product = self.products.load_product(product_id)
        check_permission(user, Action.PRODUCT_RESOLVE, product)

        if product.verification_status != VerificationStatus.FAILED:
            raise StateConflictError(
                f"Only failed passports can be resolved (current: "
                f"{product.verification_status.value}).",
                product_id=str(product_id),
            )

        product.verification_status = VerificationStatus.NOT_SUBMITTED
        product.status = ProductStatus.DRAFT
        self.products.commit_product(product)

        log_audit_event(self.session, "compliance.resolved", product.id, {}, user.id)
        return product

    def override_verification(self, user: User, product_id: uuid.UUID, reason: str) -> Product:
        product = self.products.load_product(product_id)
        check_permission(user, Action.PRODUCT_OVERRIDE_VERIFICATION, product)

        if product.is_minting:
            raise StateConflictError(
                f"Product {product_id} is being anchored and cannot be overridden.")

        product.verification_status = VerificationStatus.VERIFIED
        product.verification_override = {
            "reason": reason,
            "user_id": str(user.id),
            "date": _now_iso(),
        }
        product.last_verification_date = datetime.utcnow()
        self.products.commit_product(product)

        log_audit_event(
            self.session, "product.verification.overridden", product.id,
            {"reason": reason}, user.id)
        return product

    # ==========================================================================
    # SUPPLY CHAIN
    # ==========================================================================

    def add_custody_step(
        self,
        user: User,
        product_id: uuid.UUID,
        step: Union[CustodyStepCreate, Dict[str, Any]]
    ) -> Product:
        product = self.products.load_product(product_id)
        check_permission(user, Action.PRODUCT_EDIT, product)

        data = parse_payload(CustodyStepCreate, step)
        entry = {**data.model_dump(), "date": _now_iso()}

        # Newest first
        product.chain_of_custody = [entry] + list(product.chain_of_custody or [])
        self.products.commit_product(product)

        log_audit_event(
            self.session, "product.custody.updated", product.id, entry, user.id)
        return product

    def transfer_ownership(self, user: User, product_id: uuid.UUID, new_owner_address: str) -> Product:
        product = self.products.load_product(product_id)
        check_permission(user, Action.PRODUCT_EDIT, product)

        if not product.ownership_nft:
            raise StateConflictError(
                f"Product {product_id} has no ownership token to transfer.")

        nft = dict(product.ownership_nft)
        previous_owner = nft.get("owner_address")
        nft["owner_address"] = new_owner_address
        product.ownership_nft = nft
        self.products.commit_product(product)

        log_audit_event(
            self.session, "product.ownership.transferred", product.id,
            {"previous_owner": previous_owner, "new_owner_address": new_owner_address},
            user.id)
        return product

    def perform_customs_inspection(
        self,
        user: User,
        product_id: uuid.UUID,
        inspection: Union[CustomsInspectionCreate, Dict[str, Any]]
    ) -> Product:
        product = self.products.load_product(product_id)
        check_permission(user, Action.PRODUCT_CUSTOMS_INSPECT, product)

        data = parse_payload(CustomsInspectionCreate, inspection)
        entry = {**data.model_dump(), "date": _now_iso()}

        product.customs_history = list(product.customs_history or []) + [entry]

        transit = dict(product.transit or {})
        transit["stage"] = CUSTOMS_TRANSIT_STAGES[data.status].format(location=data.location)
        product.transit = transit
        self.products.commit_product(product)

        log_audit_event(
            self.session, "customs.inspected", product.id,
            {"status": data.status, "location": data.location}, user.id)
        return product

    # ==========================================================================
    # TRUST ARTEFACTS
    # ==========================================================================

    def generate_zk_proof_for_product(self, user: User, product_id: uuid.UUID) -> Product:
        product = self.products.get_product_by_id(product_id, user)
        check_permission(user, Action.PRODUCT_GENERATE_ZKP, product)

        proof = call_oracle(
            "generate_compliance_proof", self.oracle.generate_compliance_proof, product)

        product.zk_proof = {**proof, "is_verified": False, "verified_at": None}
        self.products.commit_product(product)

        log_audit_event(self.session, "product.zkp.generated", product.id, {}, user.id)
        return product

    def verify_zk_proof_for_product(self, user: User, product_id: uuid.UUID) -> Product:
        product = self.products.get_product_by_id(product_id, user)
        check_permission(user, Action.PRODUCT_GENERATE_ZKP, product)

        if not product.zk_proof:
            raise NotFoundError("ZK proof for product", product_id)

        valid = call_oracle(
            "verify_compliance_proof", self.oracle.verify_compliance_proof, product.zk_proof)
        if not valid:
            raise ValidationError.single("zk_proof", "Proof verification failed.")

        product.zk_proof = {
            **product.zk_proof,
            "is_verified": True,
            "verified_at": _now_iso(),
        }
        self.products.commit_product(product)

        log_audit_event(self.session, "product.zkp.verified", product.id, {}, user.id)
        return product

    # ==========================================================================
    # END OF LIFE & SERVICE
    # ==========================================================================

    def mark_as_recycled(self, user: User, product_id: uuid.UUID) -> Product:
        """
        Marks a published passport as recycled and credits the recycler.
        The lifecycle status itself is left unchanged.
        """
        product = self.products.load_product(product_id)
        check_permission(user, Action.PRODUCT_RECYCLE, product)

        if product.status != ProductStatus.PUBLISHED or \
                product.end_of_life_status != EndOfLifeStatus.ACTIVE:
            raise StateConflictError(
                "Only active published passports can be recycled.",
                product_id=str(product_id),
            )

        recycler = self.session.get(User, user.id)
        if not recycler:
            raise NotFoundError("User", user.id)

        amount = settings.recycling_credit_amount
        product.end_of_life_status = EndOfLifeStatus.RECYCLED
        recycler.circularity_credits = (recycler.circularity_credits or 0) + amount
        self.session.add(recycler)
        self.products.commit_product(product)
        self.session.refresh(recycler)

        log_audit_event(self.session, "product.recycled", product.id, {}, user.id)
        log_audit_event(
            self.session, "credits.minted", recycler.id,
            {
                "amount": amount,
                "recipient": str(recycler.id),
                "new_balance": recycler.circularity_credits,
                "product_id": str(product.id),
            },
            user.id)
        return product

    def add_service_record(self, user: User, product_id: uuid.UUID, notes: str) -> Product:
        product = self.products.load_product(product_id)
        check_permission(user, Action.PRODUCT_ADD_SERVICE_RECORD, product)

        now = _now_iso()
        record = {
            "id": str(uuid.uuid4()),
            "provider_id": str(user.id),
            "provider_name": user.full_name,
            "notes": notes,
            "created_at": now,
            "updated_at": now,
        }
        product.service_history = list(product.service_history or []) + [record]
        self.products.commit_product(product)

        log_audit_event(
            self.session, "product.serviced", product.id,
            {"record_id": record["id"]}, user.id)
        return product


class AnchoringService:
    """
    Issues the credential and anchors its hash, retrying the oracle with
    exponential backoff. On exhaustion the passport is released with
    `anchoring_status=failed` and stays Pending so it can be approved again.
    """

    def __init__(
        self,
        session: Session,
        oracle: Optional[ComplianceOracle] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        webhooks: Optional[WebhookService] = None,
    ):
        self.session = session
        self.oracle = oracle or get_oracle()
        self.max_attempts = max(1, max_attempts or settings.anchor_max_attempts)
        self.backoff_seconds = settings.anchor_backoff_seconds \
            if backoff_seconds is None else backoff_seconds
        self.backoff_max_seconds = settings.anchor_backoff_max_seconds \
            if backoff_max_seconds is None else backoff_max_seconds
        self.sleep = sleep
        self.products = ProductService(session)
        self.webhooks = webhooks or WebhookService(session)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt + 1`."""
        return min(self.backoff_seconds * (2 ** attempt), self.backoff_max_seconds)

    def _issue_and_anchor(self, product: Product, company: Company) -> Dict[str, Any]:
        credential = call_oracle(
            "create_verifiable_credential",
            self.oracle.create_verifiable_credential, product, company)

        data_hash = hash_data(credential.get("credentialSubject", credential))

        receipt = call_oracle("anchor_to_polygon", self.oracle.anchor_to_polygon, data_hash)
        if not receipt or not receipt.get("tx_hash"):
            raise OracleFailure("anchor_to_polygon", "receipt has no transaction hash")

        return {"credential": credential, "data_hash": data_hash, "receipt": receipt}

    def anchor_product_on_chain(self, product_id: uuid.UUID, user_id: Union[uuid.UUID, str]) -> Product:
        product = self.products.load_product(product_id)

        if product.anchoring_status != AnchoringStatus.PENDING:
            logger.info(
                f"Skipping anchoring for product {product_id}: status is "
                f"{product.anchoring_status.value}")
            return product

        company = self.session.get(Company, product.company_id)
        if not company:
            raise NotFoundError("Company", product.company_id)

        last_error = None
        for attempt in range(self.max_attempts):
            if attempt:
                delay = self.backoff_delay(attempt - 1)
                logger.info(f"Retrying anchor for product {product_id} in {delay:.1f}s")
                self.sleep(delay)

            product.anchor_attempts = attempt + 1
            try:
                result = self._issue_and_anchor(product, company)
            except OracleFailure as e:
                last_error = e.reason
                logger.warning(
                    f"Anchor attempt {attempt + 1}/{self.max_attempts} for product "
                    f"{product_id} failed: {e.reason}")
                continue

            return self._complete(product, company, result, user_id)

        return self._fail(product, last_error, user_id)

    def _complete(self, product: Product, company: Company, result: Dict[str, Any], user_id) -> Product:
        credential = result["credential"]
        receipt = result["receipt"]

        product.verifiable_credential = json.dumps(credential, indent=2, default=str)
        product.blockchain_proof = {
            "type": "SINGLE_HASH",
            "chain": receipt.get("chain", "Polygon"),
            "tx_hash": receipt["tx_hash"],
            "explorer_url": receipt.get("explorer_url"),
            "block_height": receipt.get("block_height"),
            "merkle_root": result["data_hash"],
            "vc_id": credential.get("id"),
        }
        product.verification_status = VerificationStatus.VERIFIED
        product.status = ProductStatus.PUBLISHED
        product.is_minting = False
        product.anchoring_status = AnchoringStatus.ANCHORED
        product.anchor_error = None
        product.last_verification_date = datetime.utcnow()

        try:
            product.qr_code_url = generate_passport_qr(product.id)
        except OSError as e:
            logger.error(f"QR code generation failed for product {product.id}: {e}")

        self.products.commit_product(product)

        log_audit_event(
            self.session, "product.anchored", product.id,
            {"tx_hash": receipt["tx_hash"], "vc_id": credential.get("id")},
            user_id)
        logger.info(f"Product {product.id} anchored in tx {receipt['tx_hash']}")

        self.webhooks.dispatch_event(
            "product.published",
            jsonable_encoder(ProductService.to_read(product)),
            company,
        )
        return product

    def _fail(self, product: Product, error: Optional[str], user_id) -> Product:
        product.is_minting = False
        product.anchoring_status = AnchoringStatus.FAILED
        product.anchor_error = error
        self.products.commit_product(product)

        log_audit_event(
            self.session, "product.anchoring.failed", product.id,
            {"attempts": product.anchor_attempts, "error": error},
            user_id)
        logger.error(
            f"Anchoring product {product.id} failed after "
            f"{product.anchor_attempts} attempt(s): {error}")
        return product


def run_anchoring(
    bind: Engine,
    product_id: uuid.UUID,
    user_id: Union[uuid.UUID, str],
    oracle: Optional[ComplianceOracle] = None
) -> None:
    """
    Background entry point. Runs on its own session after the request that
    scheduled it has finished.
    """
    with logger.contextualize(component="anchoring", product_id=str(product_id)):
        with Session(bind) as session:
            try:
                AnchoringService(session, oracle).anchor_product_on_chain(product_id, user_id)
            except NotFoundError:
                logger.warning(f"Product {product_id} disappeared before it could be anchored")


def resume_pending_anchors(bind: Engine, oracle: Optional[ComplianceOracle] = None) -> int:
    """
    Re-runs anchors left in flight by a previous process.
    Returns the number of products picked up.
    """
    with Session(bind) as session:
        stuck = session.exec(
            select(Product).where(
                Product.is_minting == True,  # noqa: E712
                Product.anchoring_status == AnchoringStatus.PENDING
            )
        ).all()
        stuck_ids = [product.id for product in stuck]

    if stuck_ids:
        logger.info(f"Resuming {len(stuck_ids)} interrupted anchor(s)")
    for product_id in stuck_ids:
        run_anchoring(bind, product_id, SYSTEM_USER, oracle)
    return len(stuck_ids)
