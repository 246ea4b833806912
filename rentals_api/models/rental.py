import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentals_api.models.base import Base

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

OPEN_RENTAL_UNIQUE_INDEX = "rentals_token_id_contract_address_status_unique_index"


class RentalStatus(str, enum.Enum):
    """
    Lifecycle of a listing.  Only OPEN listings can transition; every
    other status is terminal.
    """

    OPEN = "open"
    EXECUTED = "executed"
    CANCELLED = "cancelled"
    CLAIMED = "claimed"


class Rental(Base):
    __tablename__ = "rentals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    metadata_id: Mapped[str] = mapped_column(
        Text, ForeignKey("metadata.id", ondelete="CASCADE")
    )
    network: Mapped[str] = mapped_column(Text)
    chain_id: Mapped[int] = mapped_column(Integer)
    contract_address: Mapped[str] = mapped_column(Text)
    token_id: Mapped[str] = mapped_column(Text)
    expiration: Mapped[datetime] = mapped_column(DateTime)
    # [contract, signer, asset] indexes at signing time
    nonces: Mapped[list[str]] = mapped_column(ARRAY(Text, dimensions=1))
    signature: Mapped[str] = mapped_column(Text)
    rental_contract_address: Mapped[str] = mapped_column(Text)
    status: Mapped[RentalStatus] = mapped_column(
        Enum(RentalStatus, name="status", values_callable=lambda e: [m.value for m in e]),
        default=RentalStatus.OPEN,
        server_default=RentalStatus.OPEN.value,
    )
    target: Mapped[str] = mapped_column(Text, default=ZERO_ADDRESS, server_default=ZERO_ADDRESS)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=text("now()")
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rented_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    period_chosen: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("periods.id", use_alter=True, name="rentals_period_chosen_fkey"),
        nullable=True,
    )

    listing: Mapped["RentalListing"] = relationship(
        back_populates="rental", uselist=False, cascade="all, delete-orphan"
    )
    periods: Mapped[list["Period"]] = relationship(
        back_populates="rental",
        foreign_keys="Period.rental_id",
        order_by="Period.min_days",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("rentals_metadata_id_index", "metadata_id"),
        Index("rentals_signature_index", "signature"),
        # At most one open listing per token
        Index(
            OPEN_RENTAL_UNIQUE_INDEX,
            "token_id",
            "contract_address",
            "status",
            unique=True,
            postgresql_where=text("status = 'open'"),
        ),
    )


class RentalListing(Base):
    """Parties of a rental.  The tenant is only known once it's executed."""

    __tablename__ = "rentals_listings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rentals.id", ondelete="CASCADE"), primary_key=True
    )
    lessor: Mapped[str] = mapped_column(Text)
    tenant: Mapped[str | None] = mapped_column(Text, nullable=True)

    rental: Mapped[Rental] = relationship(back_populates="listing")


class Period(Base):
    __tablename__ = "periods"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    min_days: Mapped[int] = mapped_column(Integer)
    max_days: Mapped[int] = mapped_column(Integer)
    # numeric(78) holds any uint256 without losing precision
    price_per_day: Mapped[Decimal] = mapped_column(Numeric(78))
    rental_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rentals.id", ondelete="CASCADE")
    )

    rental: Mapped[Rental] = relationship(back_populates="periods", foreign_keys=[rental_id])

    __table_args__ = (
        CheckConstraint("min_days >= 0", name="periods_min_days_check"),
        CheckConstraint("max_days >= min_days", name="periods_max_days_check"),
        CheckConstraint("price_per_day >= 0", name="periods_price_per_day_check"),
        Index("periods_rental_id_index", "rental_id"),
        Index("periods_min_days_index", "min_days"),
        Index("periods_max_days_index", "max_days"),
        Index("periods_price_per_day_index", "price_per_day"),
    )
