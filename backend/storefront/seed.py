"""
Demo data: three categories with five products each, plus an optional
bootstrap admin taken from ADMIN_EMAIL / ADMIN_PASSWORD.

Run with:
    python -m storefront.seed
"""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from storefront import config, models, security
from storefront.database import Base, SessionLocal, engine

logger = logging.getLogger(__name__)

CATALOG = [
    {
        "name": "Hosting Services",
        "description": "Web hosting and server services",
        "products": [
            ("Starter Hosting Plan", "Entry-level hosting for small websites", "29.99", 100),
            ("Business Hosting Plan", "Advanced hosting for larger companies", "89.99", 50),
            ("VPS Server", "Virtual private server", "149.99", 30),
            ("Dedicated Server", "Dedicated hardware for high performance", "299.99", 20),
            ("Cloud Hosting", "Cloud based hosting solution", "199.99", 40),
        ],
    },
    {
        "name": "Domain Services",
        "description": "Domain registration and management",
        "products": [
            (".com Domain", "Yearly .com domain registration", "14.99", 500),
            (".com.tr Domain", ".com.tr domain registration", "19.99", 300),
            (".net Domain", "Yearly .net domain registration", "16.99", 400),
            (".org Domain", ".org domain for organizations", "18.99", 250),
            ("Domain Transfer", "Transfer an existing domain to us", "9.99", 1000),
        ],
    },
    {
        "name": "Software Products",
        "description": "Software products and solutions",
        "products": [
            ("E-Commerce Software", "Complete software for running an online store", "599.99", 25),
            ("CRM Software", "Customer relationship management", "399.99", 35),
            ("Accounting Software", "Bookkeeping for small businesses", "299.99", 45),
            ("Web Design Software", "Professional website design tool", "199.99", 60),
            ("Security Software", "Cyber security and protection suite", "149.99", 80),
        ],
    },
]


def seed_catalog(db: Session) -> int:
    """Insert the demo catalog if no category exists yet. Returns products created."""
    if db.query(models.Category).count():
        logger.info("Catalog already present, skipping seed")
        return 0

    created = 0
    for entry in CATALOG:
        category = models.Category(name=entry["name"], description=entry["description"])
        for name, description, price, stock in entry["products"]:
            category.products.append(models.Product(
                name=name,
                description=description,
                price=Decimal(price),
                stock_quantity=stock,
            ))
            created += 1
        db.add(category)
    db.commit()

    logger.info("Seeded %s categories and %s products", len(CATALOG), created)
    return created


def seed_admin(db: Session) -> None:
    if not (config.ADMIN_EMAIL and config.ADMIN_PASSWORD):
        return

    user = db.query(models.User).filter(models.User.email == config.ADMIN_EMAIL).first()
    if user is None:
        user = models.User(
            name=config.ADMIN_NAME,
            email=config.ADMIN_EMAIL,
            password_hash=security.hash_password(config.ADMIN_PASSWORD),
        )
        db.add(user)
    user.role = models.ROLE_ADMIN
    db.commit()
    logger.info("Admin account %s ready", config.ADMIN_EMAIL)


def run() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_catalog(db)
        seed_admin(db)
    finally:
        db.close()


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)
    run()


if __name__ == "__main__":
    main()
