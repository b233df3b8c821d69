# orderview/db/models/orders.py
from sqlalchemy import Column, DateTime, LargeBinary, String
from sqlalchemy.sql import func

from orderview.db.base import Base


class OrderRecord(Base):
    __tablename__ = "orders"

    """Durable copy of an order message, keyed by order_uid.

    payload holds the message bytes exactly as they were received from the
    stream. Decoding happens on the way into the read cache, so a row can be
    stored here and still fail to decode later.
    """

    order_uid = Column(String, primary_key=True)
    payload = Column(LargeBinary, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
