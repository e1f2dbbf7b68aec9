from datetime import date, datetime
from typing import Optional

from sqlalchemy import CHAR, Date, DateTime, String, text
from sqlalchemy.orm import Mapped, mapped_column

from dms.models.base import Base


class DmsCustomerMaster(Base):
    __tablename__ = "dms_customer_master"

    customer_code: Mapped[str] = mapped_column(String(32), primary_key=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    city_code: Mapped[str] = mapped_column(String(16), nullable=False)
    customer_area: Mapped[Optional[str]] = mapped_column(String(100))
    customer_address: Mapped[Optional[str]] = mapped_column(String(255))
    customer_contact_no: Mapped[Optional[str]] = mapped_column(String(100))
    license_no: Mapped[Optional[str]] = mapped_column(String(100))
    license_expiry: Mapped[Optional[date]] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    active_flag: Mapped[str] = mapped_column(
        CHAR(1), nullable=False, server_default=text("'Y'")
    )
