from sqlalchemy import Column, Integer, DateTime, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from spliteasy.db.session import Base

class Payment(Base):
    """One pay increment against a settlement; undo pops the newest."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    settlement_id = Column(Integer, ForeignKey("settlements.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    paid_at = Column(DateTime(timezone=True), server_default=func.now())

    settlement = relationship("Settlement", back_populates="payments")
