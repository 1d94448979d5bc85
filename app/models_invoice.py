"""
Invoice and Payment Models for HorseLinc billing
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Table
from sqlalchemy.orm import relationship

from .database import Base

invoice_requests = Table(
    "invoice_requests",
    Base.metadata,
    Column("invoice_id", Integer, ForeignKey("invoices.id", ondelete="CASCADE"), primary_key=True),
    Column("request_id", Integer, ForeignKey("requests.id", ondelete="CASCADE"), primary_key=True),
)

invoice_reassignees = Table(
    "invoice_reassignees",
    Base.metadata,
    Column("invoice_id", Integer, ForeignKey("invoices.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

payment_requests = Table(
    "payment_requests",
    Base.metadata,
    Column("payment_id", Integer, ForeignKey("payments.id", ondelete="CASCADE"), primary_key=True),
    Column("request_id", Integer, ForeignKey("requests.id", ondelete="CASCADE"), primary_key=True),
)


class Invoice(Base):
    """Invoice built by a service provider from one horse's completed requests"""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    amount = Column(Float, nullable=False)
    tip = Column(Float, default=0)
    paid_outside_app_at = Column(DateTime, nullable=True)
    paid_in_full_at = Column(DateTime, nullable=True)
    owners = Column(JSON, nullable=False, default=list)  # snapshot [{user, percentage}]

    leasee_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    horse_id = Column(Integer, ForeignKey("horses.id", ondelete="SET NULL"), nullable=True, index=True)
    service_provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    trainer_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    deleted_at = Column(DateTime, nullable=True)
    from_data_migration = Column(Boolean, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    leasee = relationship("User", foreign_keys=[leasee_id])
    horse = relationship("Horse")
    service_provider = relationship("User", foreign_keys=[service_provider_id])
    trainer = relationship("User", foreign_keys=[trainer_id])
    requests = relationship("Request", secondary=invoice_requests, order_by="Request.date")
    reassignees = relationship("User", secondary=invoice_reassignees)
    paying_users = relationship(
        "InvoicePayer", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoicePayer.id"
    )
    payment_approvals = relationship(
        "InvoiceApproval",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceApproval.id",
    )
    payments = relationship("Payment", back_populates="invoice", order_by="Payment.id")

    def get_paying_user(self, user):
        return next((payer for payer in self.paying_users if payer.user_id == user.id), None)

    def has_main_service_provider(self, user) -> bool:
        return self.service_provider_id == user.id

    def is_reassigned_to_user(self, user) -> bool:
        return any(reassignee.id == user.id for reassignee in self.reassignees)


class InvoicePayer(Base):
    """A user responsible for a percentage of an invoice"""

    __tablename__ = "invoice_payers"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    percentage = Column(Float, nullable=False)

    invoice = relationship("Invoice", back_populates="paying_users")
    user = relationship("User")


class InvoiceApproval(Base):
    """Copy of a payer's payment approval at the time the invoice was built"""

    __tablename__ = "invoice_approvals"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    payer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_unlimited = Column(Boolean, nullable=False, default=False)
    max_amount = Column(Float, nullable=True)

    invoice = relationship("Invoice", back_populates="payment_approvals")
    approver = relationship("User", foreign_keys=[approver_id])
    payer = relationship("User", foreign_keys=[payer_id])


class Payment(Base):
    """One payer's settlement of their share of an invoice"""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    horse_manager_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    service_provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    paying_user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    payment_submitted_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    paid_outside_app = Column(Boolean, default=False)
    date = Column(DateTime, nullable=True)
    amount = Column(Float, nullable=False)
    tip = Column(Float, default=0)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)
    percent_of_invoice = Column(Float, nullable=True)
    approvers = Column(JSON, nullable=False, default=list)  # user ids

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    horse_manager = relationship("User", foreign_keys=[horse_manager_id])
    service_provider = relationship("User", foreign_keys=[service_provider_id])
    paying_user = relationship("User", foreign_keys=[paying_user_id])
    payment_submitted_by = relationship("User", foreign_keys=[payment_submitted_by_id])
    invoice = relationship("Invoice", back_populates="payments")
    requests = relationship("Request", secondary=payment_requests)
    transactions = relationship(
        "Transaction", back_populates="payment", cascade="all, delete-orphan", order_by="Transaction.id"
    )


class Transaction(Base):
    """A single Stripe payout made as part of a payment"""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)
    service_provider_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    payment_submitted_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    paying_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="SET NULL"), nullable=True)
    stripe_transfer_amount = Column(Float, nullable=True)
    transfer_id = Column(String(255), nullable=True, index=True)
    transaction_id = Column(String(255), nullable=True)
    transaction_date = Column(DateTime, nullable=True)
    transaction_type = Column(String(20), nullable=False, default="request")  # request | tip

    payment = relationship("Payment", back_populates="transactions")
    service_provider = relationship("User", foreign_keys=[service_provider_id])
    request = relationship("Request")
