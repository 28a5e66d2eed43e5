"""
Tests for passport storage, visibility and updates.
"""

import uuid

import pytest

from app.core.exceptions import (
    NotFoundError, PermissionError, StateConflictError, ValidationError
)
from app.db.schema import (
    Product, ProductStatus, VerificationStatus, EndOfLifeStatus,
    AnchoringStatus, ProductCategory
)
from app.models.product import ProductFilters
from tests.helpers import audit_actions, complete_product_data


class TestCreate:
    """save_product without an id creates a draft passport."""

    def test_creates_draft_with_defaults(self, session, product_service, users, companies):
        product = product_service.save_product(users["supplier"], complete_product_data())

        assert product.status == ProductStatus.DRAFT
        assert product.verification_status == VerificationStatus.NOT_SUBMITTED
        assert product.end_of_life_status == EndOfLifeStatus.ACTIVE
        assert product.anchoring_status == AnchoringStatus.NONE
        assert product.company_id == companies["own"].id
        assert product.supplier == "GreenTech Supplies"
        assert product.version == 1
        assert product.product_image
        assert audit_actions(session, product.id) == ["product.created"]

    def test_requires_create_permission(self, product_service, users):
        with pytest.raises(PermissionError):
            product_service.save_product(users["retailer"], complete_product_data())

    def test_rejects_published_status(self, product_service, users):
        with pytest.raises(ValidationError) as exc_info:
            product_service.save_product(
                users["supplier"], complete_product_data(status=ProductStatus.PUBLISHED))
        assert exc_info.value.errors[0]["field"] == "status"

    def test_reports_every_invalid_field(self, product_service, users):
        with pytest.raises(ValidationError) as exc_info:
            product_service.save_product(users["supplier"], {
                "product_name": "ab",
                "product_description": "short",
                "category": "Spaceships",
            })
        fields = {err["field"] for err in exc_info.value.errors}
        assert {"product_name", "product_description", "category"} <= fields

    def test_duplicate_gtin_in_company(self, product_service, users):
        product_service.save_product(users["supplier"], complete_product_data(gtin="111"))
        with pytest.raises(StateConflictError):
            product_service.save_product(users["supplier"], complete_product_data(gtin="111"))

    def test_same_gtin_in_other_company(self, product_service, users):
        product_service.save_product(users["supplier"], complete_product_data(gtin="222"))
        other = product_service.save_product(
            users["other_supplier"], complete_product_data(gtin="222"))
        assert other.gtin == "222"


class TestVisibility:
    """Unpublished passports are only visible to their owner and global readers."""

    def test_draft_hidden_from_other_company(self, product_service, make_product, users):
        product = make_product()
        with pytest.raises(NotFoundError):
            product_service.get_product_by_id(product.id, users["other_supplier"])

    def test_draft_hidden_from_anonymous(self, product_service, make_product):
        product = make_product()
        with pytest.raises(NotFoundError):
            product_service.get_product_by_id(product.id)

    @pytest.mark.parametrize("role", ["admin", "auditor", "compliance", "retailer"])
    def test_global_readers_see_drafts(self, product_service, make_product, users, role):
        product = make_product()
        assert product_service.get_product_by_id(product.id, users[role]).id == product.id

    def test_published_visible_to_everyone(self, product_service, published_product, users):
        assert product_service.get_product_by_id(published_product.id).id == published_product.id
        assert product_service.get_product_by_id(
            published_product.id, users["other_supplier"]).id == published_product.id

    def test_list_applies_visibility(self, product_service, make_product, published_product, users):
        draft = make_product()
        other_draft = make_product(owner=users["other_supplier"])

        own_view = {p.id for p in product_service.get_products(users["supplier"])}
        assert own_view == {draft.id, published_product.id}

        anonymous_view = {p.id for p in product_service.get_products()}
        assert anonymous_view == {published_product.id}

        auditor_view = {p.id for p in product_service.get_products(users["auditor"])}
        assert auditor_view == {draft.id, other_draft.id, published_product.id}

    def test_list_filters(self, product_service, make_product, users):
        fridge = make_product(product_name="Arctic Fridge")
        sofa = make_product(product_name="Modular Sofa", category=ProductCategory.HOME_GOODS)

        found = product_service.get_products(users["supplier"], ProductFilters(search_query="FRIDGE"))
        assert [p.id for p in found] == [fridge.id]

        found = product_service.get_products(
            users["supplier"], ProductFilters(category=ProductCategory.HOME_GOODS))
        assert [p.id for p in found] == [sofa.id]

    def test_search_treats_wildcards_literally(self, product_service, make_product, users):
        tote = make_product(product_name="50% Recycled Tote")
        make_product(product_name="Alpha Widget")
        make_product(product_name="500 Series Kettle")

        found = product_service.get_products(users["supplier"], ProductFilters(search_query="50%"))
        assert [p.id for p in found] == [tote.id]

        found = product_service.get_products(users["supplier"], ProductFilters(search_query="_"))
        assert found == []

    def test_lookup_by_gtin(self, product_service, make_product, users):
        product = make_product(gtin="05012345678900")
        assert product_service.get_product_by_gtin("05012345678900", users["supplier"]).id == product.id
        with pytest.raises(NotFoundError):
            product_service.get_product_by_gtin("05012345678900", users["other_supplier"])


class TestUpdate:
    """save_product with an id merges the given fields."""

    def test_merges_and_bumps_version(self, session, product_service, make_product, users):
        product = make_product()
        updated = product_service.save_product(
            users["manufacturer"], {"product_name": "Renamed Fridge"}, product_id=product.id)

        assert updated.product_name == "Renamed Fridge"
        assert updated.gtin == product.gtin
        assert updated.version == 2
        assert audit_actions(session, product.id) == ["product.created", "product.updated"]

    def test_required_fields_cannot_be_cleared(self, session, product_service, make_product, users):
        product = make_product()

        for field in ("product_name", "product_description", "materials", "certifications"):
            with pytest.raises(ValidationError) as exc_info:
                product_service.save_product(users["supplier"], {field: None}, product_id=product.id)
            assert exc_info.value.errors[0]["field"] == field

        session.refresh(product)
        assert product.product_name == "EcoSmart Refrigerator X500"
        assert product.version == 1

    def test_gtin_change_to_taken_gtin_conflicts(self, product_service, make_product, users):
        first = make_product(gtin="11111111111111")
        second = make_product(gtin="22222222222222")

        with pytest.raises(StateConflictError):
            product_service.save_product(
                users["supplier"], {"gtin": first.gtin}, product_id=second.id)

        resaved = product_service.save_product(
            users["supplier"], {"gtin": "22222222222222"}, product_id=second.id)
        assert resaved.gtin == "22222222222222"

    def test_stale_version_conflicts(self, product_service, make_product, users):
        product = make_product()
        product_service.save_product(
            users["supplier"], {"product_name": "First Edit", "expected_version": 1},
            product_id=product.id)

        with pytest.raises(StateConflictError):
            product_service.save_product(
                users["supplier"], {"product_name": "Second Edit", "expected_version": 1},
                product_id=product.id)

    def test_cannot_publish_by_edit(self, product_service, make_product, users):
        product = make_product()
        with pytest.raises(ValidationError):
            product_service.save_product(
                users["supplier"], {"status": "Published"}, product_id=product.id)

    def test_archiving_requires_archive_permission(self, product_service, make_product, users):
        product = make_product()
        with pytest.raises(PermissionError):
            product_service.save_product(
                users["manufacturer"], {"status": "Archived"}, product_id=product.id)

        archived = product_service.save_product(
            users["supplier"], {"status": "Archived"}, product_id=product.id)
        assert archived.status == ProductStatus.ARCHIVED

    def test_other_company_cannot_edit(self, product_service, make_product, users):
        product = make_product()
        with pytest.raises(PermissionError):
            product_service.save_product(
                users["other_supplier"], {"product_name": "Hijacked"}, product_id=product.id)

    def test_editing_failed_passport_returns_to_draft(self, product_service, workflow, make_product, users):
        product = make_product()
        workflow.submit_for_review(users["supplier"], product.id)
        workflow.reject_passport(users["auditor"], product.id, "Missing data")

        edited = product_service.save_product(
            users["supplier"], {"product_description": "Now with full documentation."},
            product_id=product.id)
        assert edited.verification_status == VerificationStatus.NOT_SUBMITTED
        assert edited.status == ProductStatus.DRAFT


class TestDelete:
    """Only draft passports are deletable by their supplier."""

    def test_deletes_draft(self, session, product_service, make_product, users):
        product = make_product()
        product_service.delete_product(users["supplier"], product.id)

        assert session.get(Product, product.id) is None
        assert "product.deleted" in audit_actions(session, product.id)

    def test_published_not_deletable(self, product_service, published_product, users):
        with pytest.raises(PermissionError):
            product_service.delete_product(users["supplier"], published_product.id)

    def test_missing_product(self, product_service, users):
        with pytest.raises(NotFoundError):
            product_service.delete_product(users["supplier"], uuid.uuid4())


class TestReadModel:
    """to_read derives the customs head and checklist."""

    def test_checklist_complete(self, product_service, make_product):
        read = product_service.to_read(make_product())
        assert all(read.submission_checklist.model_dump().values())
        assert read.customs is None

    def test_checklist_gaps(self, product_service, users):
        product = product_service.save_product(users["supplier"], {
            "product_name": "Bare Product",
            "product_description": "Nothing else filled in yet.",
            "category": "Fashion",
        })
        checklist = product_service.to_read(product).submission_checklist
        assert checklist.has_base_info is True
        assert checklist.has_materials is False
        assert checklist.has_compliance_path is False
