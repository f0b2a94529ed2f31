# scripts/seed_organizations.py
import asyncio
from dotenv import load_dotenv

load_dotenv()  # make sure POSTGRES_* etc. are in the environment

from flowfee.common.logger import configure_logging
from flowfee.common.site_enums import StripeConnectContractType
from flowfee.data.dbinit import SessionLocal, init_db
from flowfee.data.organization import create_organization, get_or_create_country


async def seed_organizations():
    await init_db()
    async with SessionLocal() as db:
        us = await get_or_create_country(db, code="US", name="United States")
        de = await get_or_create_country(db, code="DE", name="Germany")

        # Platform merchant with a monthly free tier of $1,000
        await create_organization(
            db,
            name="Acme Platform Co",
            country_id=us.country_id,
            fee_percentage="0.65",
            stripe_connect_contract_type=StripeConnectContractType.PLATFORM.value,
            monthly_billing_volume_free_tier=100000,
        )

        # Merchant of record, taxes calculated through Stripe Tax
        await create_organization(
            db,
            name="Beispiel MoR GmbH",
            country_id=de.country_id,
            fee_percentage="2.9",
            stripe_connect_contract_type=StripeConnectContractType.MERCHANT_OF_RECORD.value,
        )

        # New merchant still working through $5,000 of upfront credits
        await create_organization(
            db,
            name="Startup With Credits",
            country_id=us.country_id,
            fee_percentage="0.65",
            upfront_processing_credits=500000,
        )

        await db.commit()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(seed_organizations())
