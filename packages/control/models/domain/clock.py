"""
Domain model for simulated (test) clocks.
"""

from datetime import datetime
from pydantic import BaseModel


class Clock(BaseModel):
    """A ledger-side virtual time source scoped to the objects attached to it."""

    id: str
    name: str = ""
    status: str = ""
    present: datetime
    link: str = ""

    @property
    def is_ready(self) -> bool:
        return self.status == "ready"
