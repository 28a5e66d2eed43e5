from loguru import logger
from sqlmodel import Session, select
from app.db.core import engine, create_db_and_tables
from app.db.schema import Company, Product, UserRole, ProductCategory
from app.models.user import CompanyCreate, UserCreate
from app.services.user import UserService
from app.services.product import ProductService
from app.services.workflow import WorkflowService


DEFAULT_PASSWORD = "password123"

# 1. Tenants
COMPANIES = [
    {"name": "Norruva Platform", "settings": {}},
    {"name": "GreenTech Supplies", "settings": {"webhook_signing_enabled": True}},
    {"name": "EcoFashion Co", "settings": {}},
    {"name": "Circular Audits Ltd", "settings": {}},
]

# 2. One user per role: (email, full name, company, roles)
USERS = [
    ("admin@norruva.com", "Ada Admin", "Norruva Platform", [UserRole.ADMIN]),
    ("supplier@greentech.com", "Sam Supplier", "GreenTech Supplies",
     [UserRole.SUPPLIER, UserRole.DEVELOPER]),
    ("manufacturer@greentech.com", "Max Maker", "GreenTech Supplies", [UserRole.MANUFACTURER]),
    ("supplier@ecofashion.com", "Fay Fashion", "EcoFashion Co", [UserRole.SUPPLIER]),
    ("auditor@circularaudits.com", "Aud Itor", "Circular Audits Ltd", [UserRole.AUDITOR]),
    ("compliance@circularaudits.com", "Cam Compliance", "Circular Audits Ltd",
     [UserRole.COMPLIANCE_MANAGER]),
    ("recycler@norruva.com", "Rey Recycler", "Norruva Platform", [UserRole.RECYCLER]),
    ("service@norruva.com", "Sid Service", "Norruva Platform", [UserRole.SERVICE_PROVIDER]),
    ("retailer@norruva.com", "Ria Retail", "Norruva Platform", [UserRole.RETAILER]),
    ("analyst@norruva.com", "Ben Analyst", "Norruva Platform", [UserRole.BUSINESS_ANALYST]),
]

# 3. Sample passports owned by GreenTech
SAMPLE_PRODUCTS = [
    {
        "gtin": "01234567890128",
        "product_name": "EcoSmart Refrigerator X500",
        "product_description": "Energy efficient refrigerator built with recycled steel.",
        "category": ProductCategory.ELECTRONICS,
        "materials": [
            {"name": "Recycled Steel", "percentage": 60, "recycled_content": 80, "origin": "DE"},
            {"name": "Polypropylene", "percentage": 25},
        ],
        "certifications": [{"name": "EcoCert", "issuer": "EcoCert Group"}],
        "manufacturing": {"facility": "Plant 7", "country": "DE", "emissions_kg_co2e": 120.5},
        "lifecycle": {"expected_lifespan": 15, "repairability_score": 8},
        "compliance": {"eu_espr": {"compliant": True}},
    },
    {
        "gtin": "09876543210982",
        "product_name": "Modular Sofa Frame",
        "product_description": "Bolt-together sofa frame designed for disassembly.",
        "category": ProductCategory.HOME_GOODS,
        "materials": [{"name": "FSC Oak", "percentage": 90}],
        "manufacturing": {"facility": "Workshop 2", "country": "PT"},
    },
]


def seed_companies(service: UserService) -> dict:
    logger.info("--- Seeding Companies ---")
    companies = {}
    for data in COMPANIES:
        company = service.session.exec(
            select(Company).where(Company.name == data["name"])).first()
        if not company:
            company = service.create_company(CompanyCreate(**data))
            logger.info(f"Created company: {company.name}")
        companies[company.name] = company
    return companies


def seed_users(service: UserService, companies: dict) -> dict:
    logger.info("--- Seeding Users ---")
    users = {}
    for email, full_name, company_name, roles in USERS:
        user = service.get_user_by_email(email)
        if not user:
            user = service.create_user(UserCreate(
                email=email,
                full_name=full_name,
                password=DEFAULT_PASSWORD,
                company_id=companies[company_name].id,
                roles=roles,
            ))
            logger.info(f"Created user: {email} ({', '.join(r.value for r in roles)})")
        users[email] = user
    return users


def seed_products(session: Session, users: dict):
    logger.info("--- Seeding Products ---")
    if session.exec(select(Product)).first():
        logger.info("Products already present, skipping")
        return

    supplier = users["supplier@greentech.com"]
    auditor = users["auditor@circularaudits.com"]
    products = ProductService(session)
    workflow = WorkflowService(session)

    published, draft = [products.save_product(supplier, data) for data in SAMPLE_PRODUCTS]

    # Walk the first passport through review so a published example exists
    workflow.submit_for_review(supplier, published.id)
    workflow.approve_passport(auditor, published.id)
    logger.info(f"Published sample passport {published.id}")
    logger.info(f"Draft sample passport {draft.id}")


def main():
    create_db_and_tables()
    with Session(engine) as session:
        service = UserService(session)
        companies = seed_companies(service)
        users = seed_users(service, companies)
        seed_products(session, users)
    logger.success("Seeding complete.")


if __name__ == "__main__":
    main()
