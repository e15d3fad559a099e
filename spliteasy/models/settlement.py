from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from spliteasy.db.session import Base

PENDING = "pending"
PARTIAL = "partial"
AWAITING_CONFIRMATION = "awaiting_confirmation"
PAID = "paid"
ACCEPTED = "accepted"

STATUSES = (PENDING, PARTIAL, AWAITING_CONFIRMATION, PAID, ACCEPTED)
UNPAID_STATUSES = (PENDING, PARTIAL)

class Settlement(Base):
    __tablename__ = "settlements"
    __table_args__ = (
        CheckConstraint("payer_id <> receiver_id", name="ck_settlement_not_self"),
        CheckConstraint("paid_amount >= 0", name="ck_settlement_paid_non_negative"),
        CheckConstraint("paid_amount <= total_amount", name="ck_settlement_paid_le_total"),
    )

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    payer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    paid_amount = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String(32), nullable=False, default=PENDING, index=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    payments = relationship(
        "Payment",
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="Payment.id",
    )

    # every UPDATE checks and bumps version; a stale row raises StaleDataError
    __mapper_args__ = {"version_id_col": version}

    @property
    def remaining_amount(self):
        return self.total_amount - self.paid_amount

    @property
    def raw_status(self) -> str:
        return self.status
