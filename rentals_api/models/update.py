import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from rentals_api.models.base import Base


class UpdateType(str, enum.Enum):
    METADATA = "metadata"
    RENTALS = "rentals"
    INDEXES = "indexes"


class Update(Base):
    """Watermark of the last indexer change applied by each sync job."""

    __tablename__ = "updates"

    type: Mapped[UpdateType] = mapped_column(
        Enum(UpdateType, name="update", values_callable=lambda e: [m.value for m in e]),
        primary_key=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=text("to_timestamp(0)")
    )

    __table_args__ = (
        Index("updates_updated_at_index", "updated_at"),
    )
