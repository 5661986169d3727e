"""
Domain model for the ledger account a client talks to.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from common.core.config import settings


class Account(BaseModel):
    id: str
    email: str = ""
    created: Optional[datetime] = None
    key_source: str = ""  # where the API key was read from
    isolated: bool = False  # requests are scoped to a connected account

    @property
    def url(self) -> str:
        return f"{settings.stripe_dashboard_url}/{self.id}"
