from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from flowfee.data.dbinit import Base
from flowfee.common.exception import GeneralDataException, IntegrityException
from flowfee.common.site_enums import StripeConnectContractType
from flowfee.service.fee_math import validate_percentage_string


# ----------------------------------------------------------------------
# Country
# ----------------------------------------------------------------------


class Country(Base):
    __tablename__ = "country"

    country_id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    code = Column(String(2), nullable=False, unique=True)  # ISO 3166-1 alpha-2
    name = Column(String, nullable=False)


async def select_country_by_id(
    db: AsyncSession,
    country_id: uuid.UUID,
) -> Optional[Country]:
    """Fetch a country by primary key."""
    result = await db.execute(
        select(Country).where(Country.country_id == country_id)
    )
    return result.scalar_one_or_none()


# ----------------------------------------------------------------------
# Organization
# ----------------------------------------------------------------------


class Organization(Base):
    """
    A merchant on the platform. Read-only from the fee engine's point of view;
    every percentage the engine produces starts from these columns.
    """
    __tablename__ = "organization"

    organization_id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )

    name = Column(String, nullable=False)

    # Decimal string, e.g. "0.65" for 0.65%
    fee_percentage = Column(String, nullable=False, default="0.65")

    stripe_connect_contract_type = Column(
        String,
        nullable=False,
        default=StripeConnectContractType.PLATFORM.value,
    )

    # Minor units processed per calendar month before the platform fee kicks in
    monthly_billing_volume_free_tier = Column(Integer, nullable=False, default=0)

    # Lifetime minor units processed fee-free, consumed before the monthly tier
    upfront_processing_credits = Column(Integer, nullable=False, default=0)

    country_id = Column(
        UUID(as_uuid=True),
        ForeignKey("country.country_id"),
        nullable=True,
        index=True,
    )

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    country = relationship("Country", lazy="joined")


async def select_organization_by_id(
    db: AsyncSession,
    organization_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Optional[Organization]:
    """
    Fetch a single organization by primary key.

    for_update=True takes a row lock for the rest of the transaction so that
    two finalizations for the same organization cannot both read the same
    month-to-date volume.
    """
    stmt = select(Organization).where(Organization.organization_id == organization_id)
    if for_update:
        stmt = stmt.with_for_update(of=Organization)
    result = await db.execute(stmt)
    return result.unique().scalar_one_or_none()


async def get_or_create_country(
    db: AsyncSession,
    *,
    code: str,
    name: str,
) -> Country:
    """Return the country with this ISO code, inserting it on first use."""
    code = code.upper()
    result = await db.execute(select(Country).where(Country.code == code))
    country = result.scalar_one_or_none()
    if country:
        return country

    try:
        country = Country(code=code, name=name)
        db.add(country)
        await db.flush()
        await db.refresh(country)
        return country
    except IntegrityError as exc:
        await db.rollback()
        raise IntegrityException(
            "Integrity error when inserting country",
            context={"code": code, "detail": str(exc)},
        ) from exc


async def create_organization(
    db: AsyncSession,
    *,
    name: str,
    country_id: Optional[uuid.UUID],
    fee_percentage: str = "0.65",
    stripe_connect_contract_type: str = StripeConnectContractType.PLATFORM.value,
    monthly_billing_volume_free_tier: int = 0,
    upfront_processing_credits: int = 0,
) -> Organization:
    """
    Insert a new organization row.

    fee_percentage is a decimal string and is checked here so a bad value
    fails at write time rather than on the organization's first checkout.
    """
    validate_percentage_string(fee_percentage, "Organization fee percentage")
    try:
        organization = Organization(
            name=name,
            country_id=country_id,
            fee_percentage=fee_percentage,
            stripe_connect_contract_type=stripe_connect_contract_type,
            monthly_billing_volume_free_tier=monthly_billing_volume_free_tier,
            upfront_processing_credits=upfront_processing_credits,
        )
        db.add(organization)
        await db.flush()
        await db.refresh(organization)
        return organization
    except IntegrityError as exc:
        await db.rollback()
        raise IntegrityException(
            "Integrity error when inserting organization",
            context={"name": name, "detail": str(exc)},
        ) from exc
    except Exception as exc:  # noqa: BLE001
        await db.rollback()
        raise GeneralDataException(
            "Unexpected error when inserting organization",
            context={"name": name, "detail": str(exc)},
        ) from exc
