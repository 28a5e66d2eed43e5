"""
Shared test data and small query helpers.
"""

from sqlmodel import select

from app.db.schema import AuditLog, ProductCategory

DEFAULT_PASSWORD = "testpass123"


def complete_product_data(**overrides):
    """Form values that satisfy every submission checklist item."""
    data = {
        "gtin": "01234567890128",
        "product_name": "EcoSmart Refrigerator X500",
        "product_description": "Energy efficient refrigerator built with recycled steel.",
        "category": ProductCategory.ELECTRONICS,
        "materials": [{"name": "Recycled Steel", "percentage": 60, "recycled_content": 80}],
        "certifications": [{"name": "EcoCert", "issuer": "EcoCert Group"}],
        "manufacturing": {"facility": "Plant 7", "country": "DE"},
        "lifecycle": {"expected_lifespan": 15, "repairability_score": 8},
        "compliance": {"eu_espr": {"compliant": True}},
    }
    data.update(overrides)
    return data


def audit_actions(session, entity_id):
    """Audit action tags recorded against `entity_id`, oldest first."""
    logs = session.exec(
        select(AuditLog)
        .where(AuditLog.entity_id == str(entity_id))
        .order_by(AuditLog.created_at)
    ).all()
    return [log.action for log in logs]
