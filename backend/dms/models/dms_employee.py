"""Employee master. Drivers and salesmen are the same record with a designation."""

from datetime import datetime
from typing import Optional

from sqlalchemy import CHAR, DateTime, String, text
from sqlalchemy.orm import Mapped, mapped_column

from dms.models.base import Base

DRIVER_DESIGNATIONS = frozenset({"driver", "deliveryman", "delivery man"})
SALESMAN_DESIGNATIONS = frozenset({"salesman", "order booker", "booker"})


class DmsEmployeeMaster(Base):
    __tablename__ = "dms_employee_master"

    employee_code: Mapped[str] = mapped_column(String(32), primary_key=True)
    employee_name: Mapped[str] = mapped_column(String(255), nullable=False)
    designation: Mapped[str] = mapped_column(String(100), nullable=False)
    city_code: Mapped[Optional[str]] = mapped_column(String(16))
    employee_area: Mapped[Optional[str]] = mapped_column(String(100))
    employee_contact_no: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    active_flag: Mapped[str] = mapped_column(
        CHAR(1), nullable=False, server_default=text("'Y'")
    )

    def _has_designation(self, accepted: frozenset[str]) -> bool:
        return (self.designation or "").strip().lower() in accepted

    @property
    def can_deliver(self) -> bool:
        return self._has_designation(DRIVER_DESIGNATIONS)

    @property
    def can_book(self) -> bool:
        return self._has_designation(SALESMAN_DESIGNATIONS)
