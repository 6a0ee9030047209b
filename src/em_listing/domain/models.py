"""Listing domain model: pure dataclass, no SQLAlchemy dependency."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.em_common.enums import ListingStatus


@dataclass
class Listing:
    id: str
    seller_id: str
    account_identifier: str
    price: int  # minor units
    status: str
    credentials: dict[str, Any] = field(default_factory=dict)  # field_values, shown once
    created_at: datetime | None = None
    expires_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_purchasable(self) -> bool:
        return self.status == ListingStatus.ACTIVE.value
