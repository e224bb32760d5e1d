"""Key/value configuration store (metro cities, special states)."""
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import String, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from shiprate.database import Base
from shiprate.db_types import JSONType


class SystemConfiguration(Base):
    """Tunable read by DatabaseConfigProvider on reload()."""
    __tablename__ = "system_configurations"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Any] = mapped_column(JSONType, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
