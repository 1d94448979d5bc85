from datetime import datetime, timedelta

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

HORSE_MANAGER = "horse manager"
SERVICE_PROVIDER = "service provider"
PAYMENT_APPROVER = "payment approver"

BACKWARDS_COMPATIBILITY_ERROR = (
    "An important update to this app has been released, please upgrade before using this feature."
)

# Many-to-many link tables
notification_recipients = Table(
    "notification_recipients",
    Base.metadata,
    Column("notification_id", Integer, ForeignKey("notifications.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

request_payment_approvers = Table(
    "request_payment_approvers",
    Base.metadata,
    Column("request_id", Integer, ForeignKey("requests.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    barn = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    location = Column(String(255), nullable=True)
    avatar = Column(JSON, nullable=True)  # {url, styles}

    # Stripe Connect (providers) and Stripe customer (managers)
    stripe_seller_id = Column(String(255), nullable=True)
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_last4 = Column(String(4), nullable=True)
    stripe_exp_month = Column(String(2), nullable=True)
    stripe_exp_year = Column(String(4), nullable=True)
    stripe_account_approved = Column(Boolean, nullable=True)

    roles = Column(JSON, nullable=False, default=list)  # ["horse manager", "service provider", ...]
    account_setup_complete = Column(Boolean, default=False)
    services = Column(JSON, nullable=False, default=list)  # [{service, rate}]

    password = Column(String(255), nullable=False)
    provider = Column(String(50), default="local")
    reset_password_token = Column(String(255), nullable=True, index=True)
    reset_password_expires = Column(DateTime, nullable=True)
    device_ids = Column(JSON, nullable=False, default=list)  # OneSignal player ids
    private_notes = Column(JSON, nullable=False, default=list)  # [{horse, note}]

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    payment_approvals = relationship(
        "PaymentApproval",
        foreign_keys="PaymentApproval.user_id",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="PaymentApproval.id",
    )
    trusted_providers = relationship(
        "TrustedProvider",
        foreign_keys="TrustedProvider.user_id",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="TrustedProvider.id",
    )

    def is_stripe_customer_setup(self) -> bool:
        return bool(self.stripe_customer_id)

    def start_password_reset(self, token: str, hours: int = 1) -> None:
        self.reset_password_token = token
        self.reset_password_expires = datetime.utcnow() + timedelta(hours=hours)


def is_service_provider(user: User) -> bool:
    return SERVICE_PROVIDER in (user.roles or [])


def is_manager(user: User) -> bool:
    return HORSE_MANAGER in (user.roles or [])


class PaymentApproval(Base):
    """A user allowed to pay on behalf of a horse manager"""

    __tablename__ = "payment_approvals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    is_unlimited = Column(Boolean, nullable=False, default=False)
    max_amount = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", foreign_keys=[user_id], back_populates="payment_approvals")
    approver = relationship("User", foreign_keys=[approver_id])


class TrustedProvider(Base):
    """A service provider a horse manager allows to invoice directly"""

    __tablename__ = "trusted_providers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    label = Column(String(100), nullable=False)  # braider, farrier, ... or "other"
    custom_label = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", foreign_keys=[user_id], back_populates="trusted_providers")
    provider = relationship("User", foreign_keys=[provider_id])

    @property
    def group_key(self) -> str:
        if self.label == "other" and self.custom_label:
            return self.custom_label.lower()
        return self.label


class Horse(Base):
    __tablename__ = "horses"

    id = Column(Integer, primary_key=True, index=True)
    barn_name = Column(String(255), nullable=False)
    show_name = Column(String(255), nullable=False)
    gender = Column(String(50), nullable=False)
    birth_year = Column(String(10), nullable=True)
    description = Column(Text, nullable=True)
    color = Column(String(100), nullable=True)
    sire = Column(String(255), nullable=True)
    dam = Column(String(255), nullable=True)
    height = Column(Float, nullable=True)
    avatar = Column(JSON, nullable=True)
    registrations = Column(JSON, nullable=False, default=list)  # [{name, number}]

    leased_to_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    trainer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    owners = relationship(
        "HorseOwner", back_populates="horse", cascade="all, delete-orphan", order_by="HorseOwner.id"
    )
    leased_to = relationship("User", foreign_keys=[leased_to_id])
    trainer = relationship("User", foreign_keys=[trainer_id])
    created_by = relationship("User", foreign_keys=[created_by_id])

    def get_dummy_owner(self):
        """
        Single-owner view of the horse for older app versions.
        One owner returns that user; several owners collapse into a placeholder
        whose name and barn list every owner.
        """
        if len(self.owners) == 1:
            return self.owners[0].user
        if len(self.owners) > 1:
            return {
                "_id": "multipleOwners",
                "name": ", ".join(owner.user.name or "" for owner in self.owners),
                "barn": ", ".join(owner.user.barn or "" for owner in self.owners),
            }
        return None

    def owner_snapshot(self) -> list[dict]:
        return [{"user": owner.user_id, "percentage": owner.percentage} for owner in self.owners]


class HorseOwner(Base):
    __tablename__ = "horse_owners"

    id = Column(Integer, primary_key=True, index=True)
    horse_id = Column(Integer, ForeignKey("horses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    percentage = Column(Float, nullable=False)

    horse = relationship("Horse", back_populates="owners")
    user = relationship("User")


class Show(Base):
    __tablename__ = "shows"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    message = Column(Text, nullable=False)
    send_push = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    recipients = relationship("User", secondary=notification_recipients)


class Request(Base):
    """A scheduled service for a horse, later rolled into an invoice"""

    __tablename__ = "requests"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(DateTime, nullable=False, index=True)
    from_custom_invoice = Column(Boolean, nullable=False, default=False)
    show_id = Column(Integer, ForeignKey("shows.id"), nullable=True)
    competition_class = Column(String(255), nullable=True)

    horse_id = Column(Integer, ForeignKey("horses.id", ondelete="SET NULL"), nullable=True, index=True)
    horse_manager_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    paying_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    trainer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    leased_to_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    service_provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reassigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    owners = Column(JSON, nullable=False, default=list)  # snapshot [{user, percentage}]
    services = Column(JSON, nullable=False, default=list)  # [{service, rate, quantity}]
    instructions = Column(Text, nullable=True)
    provider_notes = Column(Text, nullable=True)
    total = Column(Float, nullable=False, default=0)

    deleted_at = Column(DateTime, nullable=True)
    declined_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    declined_by_head_service_provider = Column(Boolean, nullable=False, default=False)
    dismissed_by = Column(JSON, nullable=False, default=list)  # user ids
    previous_reassignees = Column(JSON, nullable=False, default=list)  # user ids
    added_to_invoice = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    show = relationship("Show")
    horse = relationship("Horse")
    horse_manager = relationship("User", foreign_keys=[horse_manager_id])
    paying_user = relationship("User", foreign_keys=[paying_user_id])
    trainer = relationship("User", foreign_keys=[trainer_id])
    leased_to = relationship("User", foreign_keys=[leased_to_id])
    service_provider = relationship("User", foreign_keys=[service_provider_id])
    reassigned_to = relationship("User", foreign_keys=[reassigned_to_id])
    payment_approvers = relationship("User", secondary=request_payment_approvers)


def get_service_count(requests) -> int:
    """Number of services across requests, counting quantities"""
    return sum(int(service.get("quantity") or 1) for request in requests for service in request.services or [])


def get_services(requests) -> list[dict]:
    return [service for request in requests for service in request.services or []]


def is_same_day(request_date: datetime) -> bool:
    """True when the request day starts no more than 24 hours after today starts"""
    start_of_today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    start_of_request = request_date.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    return (start_of_request - start_of_today) <= timedelta(hours=24)


def get_dummy_paying_user(request, owners_by_id: dict) -> dict:
    """
    Paying user placeholder for older app versions that group by payer.
    Requests with owners collapse into one entry naming every owner.
    """
    if not request.owners:
        return {}
    names = [getattr(owners_by_id.get(owner["user"]), "name", "") or "" for owner in request.owners]
    return {"_id": "multipleOwners", "name": ", ".join(names)}


def get_horses(requests) -> list:
    """Unique horses across requests, in first-seen order"""
    horses = []
    for request in requests:
        if request.horse is not None and all(horse.id != request.horse.id for horse in horses):
            horses.append(request.horse)
    return horses
