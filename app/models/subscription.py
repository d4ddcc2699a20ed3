from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.sql import func
from app.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    provider = Column(String, nullable=False, default="stripe")  # "stripe" or "paypal"
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, unique=True, nullable=True)
    # PayPal identifiers are kept separate from Stripe ones
    paypal_subscription_id = Column(String, unique=True, nullable=True)
    status = Column(String, nullable=False, default="inactive")
    tier = Column(String, nullable=False, default="free")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
