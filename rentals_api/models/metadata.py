from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rentals_api.models.base import Base


class Metadata(Base):
    """
    One row per LAND asset (parcel or estate) that has ever been listed.

    Rows are created the first time an asset is seen, either when a listing
    is created or when the rentals sync finds an on-chain rental without a
    listing.  They are refreshed by the metadata sync and never deleted.
    """

    __tablename__ = "metadata"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    category: Mapped[str] = mapped_column(Text)  # parcel, estate
    search_text: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)
    distance_to_plaza: Mapped[int | None] = mapped_column(Integer, nullable=True)
    adjacent_to_road: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    estate_size: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
