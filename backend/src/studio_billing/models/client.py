"""Client model for the people and companies being billed."""
from sqlalchemy import Column, String, Text

from studio_billing.models.base import Base


class Client(Base):
    """
    A billed client.

    Subscriptions, payment plans and invoices carry the client's id and a
    copy of its email and name taken at creation time.
    """

    __tablename__ = "clients"

    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    company = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    stripe_customer_id = Column(String, nullable=True, index=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Client(id={self.id}, email={self.email})>"
