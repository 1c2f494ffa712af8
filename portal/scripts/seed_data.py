"""
Seed script - default administrator and the starter service catalog.

``seed_defaults`` runs at application startup and only inserts what is
missing; running this module directly seeds a fresh database:

    python -m portal.scripts.seed_data
"""

import asyncio
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import settings
from portal.db import init_db, async_session_maker, Service, User, UserRole
from portal.services.auth_service import create_user

logger = logging.getLogger(__name__)


SEED_SERVICES = [
    {
        "id": "svc_birth_certificate",
        "title": "Acte de naissance",
        "description": "Demande ou retrait d'un acte de naissance officiel.",
        "category": "documents",
        "steps": [
            {"order": 1, "title": "Préparer les pièces", "description": "Carte d'identité + livret de famille."},
            {"order": 2, "title": "Se rendre à la mairie", "description": "Déposer la demande au guichet."},
            {"order": 3, "title": "Retirer le document", "description": "Revenir avec le récépissé."},
        ],
        "forms": [
            {"name": "Formulaire CERFA", "url": "https://example.gov/forms/birth.pdf"},
        ],
        "faq": [
            {"id": "delais", "question": "Quels délais ?", "answer": "24 à 72 heures selon la commune."},
        ],
        "contact": {"phone": "+213-555-123456", "email": "etatcivil@example.gov"},
    },
    {
        "id": "svc_passport",
        "title": "Passeport biométrique",
        "description": "Démarches pour obtenir un passeport biométrique.",
        "category": "documents",
        "steps": [
            {"order": 1, "title": "Prendre rendez-vous", "description": "Via la plateforme officielle."},
            {"order": 2, "title": "Déposer le dossier", "description": "Présenter les pièces et photos."},
            {"order": 3, "title": "Suivre la production", "description": "Recevoir une notification SMS."},
        ],
        "forms": [
            {"name": "Formulaire de demande", "url": "https://example.gov/forms/passport.pdf"},
        ],
        "faq": [
            {"id": "cout", "question": "Combien ça coûte ?", "answer": "10 000 DA pour un adulte."},
        ],
        "contact": {"phone": "+213-555-654321", "email": "passeport@example.gov"},
    },
]


async def seed_defaults(db: AsyncSession) -> dict:
    """Create the admin account when no admin exists, and the seed services when the catalog is empty."""
    created = {"admin": False, "services": 0}

    admin = await db.scalar(select(User).where(User.role == UserRole.ADMIN.value).limit(1))
    if admin is None:
        await create_user(
            db,
            email=settings.admin_email,
            password=settings.admin_password,
            name="System Administrator",
            role=UserRole.ADMIN.value,
        )
        created["admin"] = True
        logger.info("Default admin user created: %s", settings.admin_email)

    service_count = await db.scalar(select(func.count(Service.id))) or 0
    if service_count == 0:
        for data in SEED_SERVICES:
            db.add(Service(**data))
        await db.commit()
        created["services"] = len(SEED_SERVICES)
        logger.info("Default services seeded (%d)", len(SEED_SERVICES))

    return created


async def seed_database():
    """Seed the database with the default data"""
    print("🌱 Starting database seed...")
    await init_db()
    print("✅ Database initialized")

    async with async_session_maker() as db:
        created = await seed_defaults(db)

    print("\n✅ Seeding complete!")
    print(f"   Admin created: {created['admin']}")
    print(f"   Services created: {created['services']}")


if __name__ == "__main__":
    asyncio.run(seed_database())
