"""
HTTP tests: routing, status codes and error bodies.
"""

import uuid

from app.db.schema import UserRole
from tests.helpers import DEFAULT_PASSWORD, complete_product_data


def product_json(**overrides):
    overrides.setdefault("category", "Electronics")
    return complete_product_data(**overrides)


class TestAuthApi:
    """Signin, refresh and profile endpoints."""

    def test_signin_and_me(self, client, make_user):
        make_user(UserRole.SUPPLIER, email="login@example.com")

        response = client.post("/api/v1/auth/signin", json={
            "email": "Login@Example.com", "password": DEFAULT_PASSWORD})

        assert response.status_code == 200
        tokens = response.json()
        assert tokens["token_type"] == "bearer"

        me = client.get("/api/v1/auth/me", headers={
            "Authorization": f"Bearer {tokens['access_token']}"})
        assert me.status_code == 200
        assert me.json()["email"] == "login@example.com"
        assert me.json()["roles"] == ["Supplier"]

        refreshed = client.post("/api/v1/auth/refresh", json={
            "refresh_token": tokens["refresh_token"]})
        assert refreshed.status_code == 200
        assert refreshed.json()["access_token"]

    def test_wrong_password(self, client, make_user):
        make_user(UserRole.SUPPLIER, email="login@example.com")

        response = client.post("/api/v1/auth/signin", json={
            "email": "login@example.com", "password": "not-the-password"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Incorrect email or password"

    def test_me_requires_token(self, client):
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_access_token_is_not_a_refresh_token(self, client, users, auth_headers):
        token = auth_headers(users["supplier"])["Authorization"].split(" ")[1]
        response = client.post("/api/v1/auth/refresh", json={"refresh_token": token})
        assert response.status_code == 401


class TestProductsApi:
    """CRUD endpoints and the error body shape."""

    def test_anonymous_list_shows_published_only(self, client, make_product, published_product):
        make_product()

        response = client.get("/api/v1/products/")

        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == [str(published_product.id)]

    def test_create_get_patch_delete(self, client, users, auth_headers):
        headers = auth_headers(users["supplier"])

        created = client.post("/api/v1/products/", json=product_json(), headers=headers)
        assert created.status_code == 201
        body = created.json()
        assert body["status"] == "Draft"
        assert body["verification_status"] == "Not Submitted"
        assert body["submission_checklist"]["has_materials"] is True
        product_id = body["id"]

        fetched = client.get(f"/api/v1/products/{product_id}", headers=headers)
        assert fetched.status_code == 200

        patched = client.patch(f"/api/v1/products/{product_id}", headers=headers, json={
            "product_name": "Renamed Fridge", "expected_version": 1})
        assert patched.status_code == 200
        assert patched.json()["product_name"] == "Renamed Fridge"
        assert patched.json()["version"] == 2

        deleted = client.delete(f"/api/v1/products/{product_id}", headers=headers)
        assert deleted.status_code == 204
        assert client.get(f"/api/v1/products/{product_id}", headers=headers).status_code == 404

    def test_other_company_gets_404(self, client, make_product, users, auth_headers):
        product = make_product()

        response = client.get(
            f"/api/v1/products/{product.id}", headers=auth_headers(users["other_supplier"]))

        assert response.status_code == 404

    def test_stale_version_is_409(self, client, make_product, users, auth_headers):
        product = make_product()
        headers = auth_headers(users["supplier"])
        client.patch(f"/api/v1/products/{product.id}", headers=headers, json={
            "product_name": "First Edit", "expected_version": 1})

        response = client.patch(f"/api/v1/products/{product.id}", headers=headers, json={
            "product_name": "Second Edit", "expected_version": 1})

        assert response.status_code == 409

    def test_validation_error_lists_fields(self, client, users, auth_headers):
        response = client.post(
            "/api/v1/products/",
            json=product_json(status="Published"),
            headers=auth_headers(users["supplier"]))

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["message"] == "Validation failed"
        assert detail["errors"][0]["field"] == "status"

    def test_create_requires_authentication(self, client):
        assert client.post("/api/v1/products/", json=product_json()).status_code == 401

    def test_permission_error_is_403(self, client, users, auth_headers):
        response = client.post(
            "/api/v1/products/", json=product_json(), headers=auth_headers(users["retailer"]))

        assert response.status_code == 403
        assert "product:create" in response.json()["detail"]


class TestWorkflowApi:
    """Lifecycle endpoints."""

    def test_submit_approve_publishes_in_background(self, session, client, make_product,
                                                    users, auth_headers):
        product = make_product()

        submitted = client.post(
            f"/api/v1/products/{product.id}/submit", headers=auth_headers(users["supplier"]))
        assert submitted.status_code == 200
        assert submitted.json()["verification_status"] == "Pending"

        approved = client.post(
            f"/api/v1/products/{product.id}/approve", headers=auth_headers(users["auditor"]))
        assert approved.status_code == 202
        assert approved.json()["anchoring_status"] == "pending"

        # TestClient runs background tasks before returning
        session.expire_all()
        published = client.get(f"/api/v1/products/{product.id}").json()
        assert published["status"] == "Published"
        assert published["verification_status"] == "Verified"
        assert published["anchoring_status"] == "anchored"
        assert published["is_minting"] is False
        assert published["blockchain_proof"]["tx_hash"].startswith("0x")

    def test_owner_cannot_approve(self, client, make_product, workflow, users, auth_headers):
        product = make_product()
        workflow.submit_for_review(users["supplier"], product.id)

        response = client.post(
            f"/api/v1/products/{product.id}/approve", headers=auth_headers(users["own_auditor"]))

        assert response.status_code == 403

    def test_reject_then_resolve(self, client, make_product, workflow, users, auth_headers):
        product = make_product()
        workflow.submit_for_review(users["supplier"], product.id)

        rejected = client.post(
            f"/api/v1/products/{product.id}/reject",
            headers=auth_headers(users["auditor"]),
            json={"reason": "Missing battery data", "gaps": [
                {"regulation": "EU Battery Regulation", "issue": "No carbon footprint"}]})
        assert rejected.status_code == 200
        assert rejected.json()["verification_status"] == "Failed"

        resolved = client.post(
            f"/api/v1/products/{product.id}/resolve", headers=auth_headers(users["compliance"]))
        assert resolved.status_code == 200
        assert resolved.json()["verification_status"] == "Not Submitted"

    def test_illegal_transition_is_409(self, client, make_product, users, auth_headers):
        product = make_product()

        response = client.post(
            f"/api/v1/products/{product.id}/approve", headers=auth_headers(users["auditor"]))

        assert response.status_code == 409

    def test_custody_step(self, client, published_product, users, auth_headers):
        response = client.post(
            f"/api/v1/products/{published_product.id}/custody",
            headers=auth_headers(users["supplier"]),
            json={"event": "Shipped", "location": "Rotterdam", "actor": "Maersk"})

        assert response.status_code == 200
        assert response.json()["chain_of_custody"][0]["event"] == "Shipped"

    def test_invalid_wallet_address_is_422(self, client, published_product, users, auth_headers):
        response = client.post(
            f"/api/v1/products/{published_product.id}/ownership",
            headers=auth_headers(users["supplier"]),
            json={"new_owner_address": "not-a-wallet"})

        assert response.status_code == 422


class TestBulkApi:
    """Bulk routes are not shadowed by the per-product routes."""

    def test_bulk_delete(self, client, make_product, users, auth_headers):
        product = make_product()
        missing = str(uuid.uuid4())

        response = client.post(
            "/api/v1/products/bulk/delete",
            headers=auth_headers(users["supplier"]),
            json={"product_ids": [str(product.id), missing]})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert [r["ok"] for r in body["results"]] == [True, False]
        assert body["results"][1]["id"] == missing

    def test_bulk_create(self, client, users, auth_headers):
        response = client.post(
            "/api/v1/products/bulk/create",
            headers=auth_headers(users["supplier"]),
            json={"products": [product_json(gtin="900"), product_json(gtin="901")]})

        assert response.status_code == 200
        assert response.json()["count"] == 2


class TestAuditAndHealthApi:
    """Audit log access and readiness."""

    def test_audit_log_requires_audit_role(self, client, make_product, users, auth_headers):
        product = make_product()

        assert client.get(
            "/api/v1/audit-logs/", headers=auth_headers(users["supplier"])).status_code == 403

        response = client.get(
            f"/api/v1/audit-logs/entity/{product.id}", headers=auth_headers(users["auditor"]))
        assert response.status_code == 200
        assert [log["action"] for log in response.json()] == ["product.created"]

    def test_audit_log_listing(self, client, make_product, users, auth_headers):
        make_product()

        response = client.get("/api/v1/audit-logs/?limit=5", headers=auth_headers(users["compliance"]))

        assert response.status_code == 200
        assert response.json()[0]["action"] == "product.created"

    def test_user_trail_and_single_entry(self, client, make_product, users, auth_headers):
        make_product()
        headers = auth_headers(users["auditor"])

        trail = client.get(f"/api/v1/audit-logs/user/{users['supplier'].id}", headers=headers)
        assert trail.status_code == 200
        assert [log["action"] for log in trail.json()] == ["product.created"]

        log_id = trail.json()[0]["id"]
        entry = client.get(f"/api/v1/audit-logs/{log_id}", headers=headers)
        assert entry.status_code == 200
        assert entry.json()["user_id"] == str(users["supplier"].id)

        missing = client.get(f"/api/v1/audit-logs/{uuid.uuid4()}", headers=headers)
        assert missing.status_code == 404

    def test_readiness(self, client, published_product):
        response = client.get("/api/v1/readiness")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ready", "database": "online", "anchors_in_flight": 0}
