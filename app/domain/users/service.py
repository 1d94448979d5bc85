"""User service - Business logic for accounts, Stripe setup, approvers and trusted providers"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ... import email_service
from ...config import BASE_URL, PASSWORD_RESET_EXPIRE_HOURS
from ...models import (
    BACKWARDS_COMPATIBILITY_ERROR,
    HORSE_MANAGER,
    PAYMENT_APPROVER,
    SERVICE_PROVIDER,
    PaymentApproval,
    TrustedProvider,
    User,
    is_manager,
    is_service_provider,
)
from ...models_invoice import Transaction
from ...security_utils import (
    create_access_token,
    generate_reset_token,
    generate_timed_token,
    hash_password_bcrypt,
    verify_password_bcrypt,
    verify_timed_token,
)
from ...services import stripe_service
from ...services.notification_service import create_notification, send_email_safely
from ...shared.errors import ApiError, EntityNotFound, ModelValidationError
from ...shared.serializers import (
    extract_id,
    serialize_payment_approval,
    serialize_trusted_provider,
    serialize_user,
)
from ...shared.validators import parse_id_list
from ...utils.sanitization import format_amount, sanitize_object
from .repository import UserRepository, has_role
from .schemas import PaymentApprovalBody, TrustedProviderBody, UserCreate, UserUpdate

logger = logging.getLogger(__name__)

STRIPE_STATE_SALT = "stripe-connect-state"

# Body keys that map onto User columns
WRITABLE_FIELDS = {
    "name": "name",
    "email": "email",
    "barn": "barn",
    "phone": "phone",
    "location": "location",
    "avatar": "avatar",
    "roles": "roles",
    "services": "services",
    "accountSetupComplete": "account_setup_complete",
    "privateNotes": "private_notes",
}


def clean_roles(roles: Optional[list[str]]) -> list[str]:
    """Drop blank roles; a user always has at least the basic role"""
    roles = [role for role in roles or [] if role]
    return roles or ["user"]


def approved_amount_text(is_unlimited: bool, max_amount: Optional[float]) -> str:
    if is_unlimited:
        return "any amount"
    return f"up to ${format_amount(max_amount)}"


def group_trusted_providers(trusted_providers: list[TrustedProvider]) -> list[list[dict]]:
    """Providers bucketed by label (custom label for "other"), as a list of lists"""
    groups: dict[str, list[dict]] = {}
    for trusted in trusted_providers:
        groups.setdefault(trusted.group_key, []).append(serialize_trusted_provider(trusted))
    return list(groups.values())


class UserService:
    """Service layer for user business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = UserRepository()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_users(
        self,
        current_user: User,
        search_term: Optional[str],
        role: Optional[str],
        limit_by_horse: bool,
        exclude_ids: Optional[str],
        limit: int,
        skip: int,
    ) -> dict:
        filters = []
        if search_term:
            filters.append(User.name.ilike(f"%{search_term}%"))

        # Managers looking for payment approvers never see themselves
        if is_manager(current_user) and search_term and role == PAYMENT_APPROVER:
            filters.append(User.id != current_user.id)

        if limit_by_horse:
            filters.append(User.id.in_(self.repo.get_manager_ids_for_user_horses(self.db, current_user)))

        if role in (HORSE_MANAGER, PAYMENT_APPROVER):
            filters.append(has_role(HORSE_MANAGER))
        elif role == SERVICE_PROVIDER:
            filters.append(has_role(SERVICE_PROVIDER))

        excluded = parse_id_list(exclude_ids)
        if excluded:
            filters.append(User.id.notin_(excluded))

        users, user_count = self.repo.search_users(self.db, filters, limit, skip)
        return {"users": [serialize_user(user) for user in users], "userCount": user_count}

    def signup(self, data: UserCreate) -> dict:
        if self.repo.email_taken(self.db, data.email):
            raise ModelValidationError({"email": "Email already exists"})

        user = User(
            email=data.email,
            password=hash_password_bcrypt(data.password),
            name=data.name,
            roles=clean_roles(data.roles),
            barn=data.barn,
            phone=data.phone,
            location=data.location,
            avatar=data.avatar,
            services=[service.model_dump() for service in data.services],
            account_setup_complete=bool(data.accountSetupComplete),
            private_notes=data.privateNotes or [],
            device_ids=[],
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"✅ User {user.id} signed up")

        response = serialize_user(user)
        response["token"] = create_access_token(user.id)
        return response

    def get_user(self, user_id: str, current_user: User) -> dict:
        if user_id == "multipleOwners":
            raise ApiError(BACKWARDS_COMPATIBILITY_ERROR)

        if user_id == "me":
            response = serialize_user(current_user)
            if is_manager(current_user):
                response["stripeCustomerSetup"] = current_user.is_stripe_customer_setup()
            if is_service_provider(current_user):
                response["stripeConnectState"] = generate_timed_token(
                    {"user_id": current_user.id}, salt=STRIPE_STATE_SALT
                )
            return response

        target_id = extract_id(user_id)
        user = self.repo.get_user_by_id(self.db, target_id) if target_id else None
        if not user:
            raise EntityNotFound()
        return serialize_user(user)

    def update_me(self, current_user: User, data: UserUpdate) -> dict:
        updates = sanitize_object(data.model_dump(exclude_unset=True), [*WRITABLE_FIELDS, "password"])

        if updates.get("email") and self.repo.email_taken(self.db, updates["email"], current_user.id):
            raise ModelValidationError({"email": "Email already exists"})

        for key, column in WRITABLE_FIELDS.items():
            if key in updates:
                setattr(current_user, column, updates[key])

        if "roles" in updates:
            current_user.roles = clean_roles(updates["roles"])
        if updates.get("password"):
            current_user.password = hash_password_bcrypt(updates["password"])

        self.db.commit()
        self.db.refresh(current_user)
        return serialize_user(current_user)

    def delete_me(self, current_user: User) -> None:
        logger.info(f"🗑️ Deleting user {current_user.id}")
        self.db.delete(current_user)
        self.db.commit()

    def change_password(self, current_user: User, old_password: Optional[str], new_password: Optional[str]) -> str:
        if not new_password:
            raise ApiError("New password is required")
        if not old_password:
            raise ApiError("Old password is required")
        if not verify_password_bcrypt(old_password, current_user.password):
            raise ApiError("Incorrect password")

        current_user.password = hash_password_bcrypt(new_password)
        self.db.commit()
        return "Password successfully changed"

    async def forgot_password(self, email: Optional[str]) -> str:
        if not email:
            raise ApiError("Email is required")

        user = self.repo.get_user_by_email(self.db, email)
        if not user:
            raise ApiError("Could not find a user with this email")

        user.start_password_reset(generate_reset_token(), PASSWORD_RESET_EXPIRE_HOURS)
        self.db.commit()

        await send_email_safely(
            email_service.send_password_reset_email,
            "password reset",
            to=user.email,
            token=user.reset_password_token,
        )
        return "Password reset instructions have been sent."

    def check_reset_token(self, token: str) -> str:
        if not self.repo.get_user_by_reset_token(self.db, token):
            raise ApiError("Password reset token is incorrect or has expired.")
        return "Password reset token is valid."

    async def reset_password(self, token: str, password: Optional[str]) -> str:
        if not password:
            raise ApiError("Password is required.")

        user = self.repo.get_user_by_reset_token(self.db, token)
        if not user:
            raise ApiError("Password reset token is incorrect or has expired.")

        user.password = hash_password_bcrypt(password)
        user.reset_password_token = None
        user.reset_password_expires = None
        self.db.commit()

        await send_email_safely(email_service.send_password_changed_email, "password changed", to=user.email)
        return "Password has been updated."

    def add_device(self, current_user: User, device_id) -> str:
        if isinstance(device_id, dict):
            device_id = device_id.get("userId")
        if not device_id:
            raise ApiError("Device id is required")

        device_ids = list(current_user.device_ids or [])
        if device_id in device_ids:
            return "Device id has already been added"

        device_ids.append(device_id)
        current_user.device_ids = device_ids
        self.db.commit()
        return "Device id has been added"

    # ------------------------------------------------------------------
    # Stripe
    # ------------------------------------------------------------------

    async def setup_stripe_payment(self, current_user: User, card_token: str) -> None:
        """Attach a card to the user's Stripe customer, creating the customer on first use"""
        try:
            if current_user.stripe_customer_id:
                customer = await stripe_service.update_customer(
                    current_user.stripe_customer_id, current_user.email, card_token
                )
            else:
                customer = await stripe_service.create_customer(current_user.email, card_token)
        except stripe_service.StripeError as e:
            raise ApiError(e.message) from e

        card = stripe_service.default_card(customer)
        if not card:
            raise ApiError("Something went wrong.")

        current_user.stripe_customer_id = customer.get("id") or current_user.stripe_customer_id
        current_user.stripe_last4 = str(card.get("last4") or "")
        current_user.stripe_exp_month = str(card.get("exp_month") or "")
        current_user.stripe_exp_year = str(card.get("exp_year") or "")
        self.db.commit()
        logger.info(f"💳 Saved card ending {current_user.stripe_last4} for user {current_user.id}")

    async def finish_stripe_connect(self, code: Optional[str], state: Optional[str]) -> str:
        """Complete Connect onboarding and return the admin page to redirect to"""
        deny_url = f"{BASE_URL}/admin/stripe/deny"
        approve_url = f"{BASE_URL}/admin/stripe/approve"

        payload = verify_timed_token(state, max_age=60 * 60 * 24, salt=STRIPE_STATE_SALT) if state else None
        if not payload or not code:
            logger.warning("⚠️ Stripe redirect with missing code or bad state")
            return deny_url

        body = await stripe_service.exchange_oauth_code(code)
        if body.get("error"):
            logger.warning(f"⚠️ Stripe OAuth error: {body.get('error')}")
            return deny_url

        user = self.repo.get_user_by_id(self.db, payload.get("user_id"))
        if not user:
            raise EntityNotFound()

        user.stripe_seller_id = body.get("stripe_user_id")
        user.stripe_account_approved = True
        self.db.commit()
        logger.info(f"✅ Stripe account connected for user {user.id}")
        return approve_url

    async def get_dashboard_url(self, current_user: User) -> dict:
        if not current_user.stripe_seller_id:
            raise ApiError("You do not have a Stripe account")
        try:
            link = await stripe_service.create_login_link(current_user.stripe_seller_id)
        except stripe_service.StripeError as e:
            raise ApiError(e.message) from e
        return {"link": link}

    async def handle_connect_webhook(self, event: dict) -> None:
        """Record posted payouts and tell the provider"""
        await send_email_safely(email_service.send_stripe_activity_email, "stripe connect", event=event, connect=True)

        if event.get("type") != "payment.created":
            return

        data_object = (event.get("data") or {}).get("object") or {}
        source_transfer = data_object.get("source_transfer")
        if not source_transfer:
            return

        transactions = self.db.query(Transaction).filter(Transaction.transfer_id == source_transfer).all()
        for transaction in transactions:
            transfer_amount = round((data_object.get("amount") or 0) / 100, 2)
            transaction.stripe_transfer_amount = transfer_amount

            message = None
            if transaction.transaction_type == "tip":
                message = f"A tip for ${transfer_amount:.2f} has been posted."
            elif transaction.request is not None and transaction.request.horse is not None:
                message = (
                    f"Payment for {transaction.request.horse.barn_name} for ${transfer_amount:.2f} has been posted."
                )

            self.db.commit()
            if message and transaction.service_provider_id:
                await create_notification(self.db, [transaction.service_provider_id], message)

    async def handle_master_webhook(self, event: dict) -> None:
        await send_email_safely(email_service.send_stripe_activity_email, "stripe master", event=event, connect=False)

    # ------------------------------------------------------------------
    # Payment approvers
    # ------------------------------------------------------------------

    def _reset_pending_request_approvers(self, current_user: User) -> None:
        """Pending requests the user pays for follow the user's current approver list"""
        approvers = [approval.approver for approval in current_user.payment_approvals]
        for request in self.repo.get_pending_requests_for_payer(self.db, current_user):
            request.payment_approvers = list(approvers)

    async def add_payment_approval(self, current_user: User, data: PaymentApprovalBody) -> dict:
        approver_id = extract_id(data.approver)
        approver = self.repo.get_user_by_id(self.db, approver_id) if approver_id else None
        if not approver:
            raise EntityNotFound()

        # A duplicate approver replaces the existing entry and keeps its id
        approval = next((a for a in current_user.payment_approvals if a.approver_id == approver.id), None)
        if approval is None:
            approval = PaymentApproval(approver=approver)
            current_user.payment_approvals.append(approval)
        approval.is_unlimited = data.isUnlimited
        approval.max_amount = data.maxAmount
        self.db.flush()

        self._reset_pending_request_approvers(current_user)
        self.db.commit()
        self.db.refresh(approval)

        message = (
            f"{current_user.name} has approved you to pay "
            f"{approved_amount_text(approval.is_unlimited, approval.max_amount)} on their behalf."
        )
        await create_notification(self.db, [approver], message)
        return serialize_payment_approval(approval)

    async def update_payment_approval(self, current_user: User, data: PaymentApprovalBody) -> dict:
        approval = next((a for a in current_user.payment_approvals if a.id == data.id), None)
        if approval is None:
            raise EntityNotFound()

        approval.is_unlimited = data.isUnlimited
        approval.max_amount = data.maxAmount

        # Outstanding invoices carry a copy of the approval; keep them in step
        for invoice_approval in self.repo.get_outstanding_invoice_approvals(
            self.db, current_user.id, approval.approver_id
        ):
            invoice_approval.is_unlimited = data.isUnlimited
            invoice_approval.max_amount = data.maxAmount

        self.db.commit()
        self.db.refresh(approval)

        message = (
            f"Payment approval updated. You can now pay "
            f"{approved_amount_text(approval.is_unlimited, approval.max_amount)} on {current_user.name}'s behalf."
        )
        await create_notification(self.db, [approval.approver_id], message)
        return serialize_payment_approval(approval)

    def delete_payment_approval(self, current_user: User, approval_id: int) -> dict:
        current_user.payment_approvals = [a for a in current_user.payment_approvals if a.id != approval_id]
        self.db.flush()
        self._reset_pending_request_approvers(current_user)
        self.db.commit()
        return {"deletedId": approval_id}

    def get_owner_authorizations(self, current_user: User) -> list[dict]:
        authorizations = []
        for owner in self.repo.get_managers_approving(self.db, current_user):
            for approval in owner.payment_approvals:
                if approval.approver_id == current_user.id:
                    authorizations.append(
                        {
                            "_owner": serialize_user(owner),
                            "isUnlimited": bool(approval.is_unlimited),
                            "maxAmount": approval.max_amount,
                        }
                    )
        return authorizations

    # ------------------------------------------------------------------
    # Trusted providers
    # ------------------------------------------------------------------

    def get_grouped_providers(self, current_user: User) -> list[list[dict]]:
        return group_trusted_providers(current_user.trusted_providers)

    async def add_service_provider(self, current_user: User, data: TrustedProviderBody) -> list[list[dict]]:
        provider_id = extract_id(data.provider)
        provider = self.repo.get_user_by_id(self.db, provider_id) if provider_id else None
        if not provider:
            raise EntityNotFound()

        custom_label = data.customLabel
        if data.label == "other" and custom_label:
            custom_label = custom_label.lower().strip()

        current_user.trusted_providers.append(
            TrustedProvider(provider=provider, label=data.label, custom_label=custom_label)
        )
        self.db.commit()
        self.db.refresh(current_user)

        message = (
            f"{current_user.name} has added you as a service provider. "
            "You can now invoice them directly from the Horses and Payments tabs."
        )
        await create_notification(self.db, [provider], message)
        return group_trusted_providers(current_user.trusted_providers)

    async def delete_service_provider(self, current_user: User, trusted_id: int) -> list[list[dict]]:
        trusted = self.repo.get_trusted_provider(self.db, current_user, trusted_id)
        if not trusted:
            raise EntityNotFound()

        provider_id = trusted.provider_id
        current_user.trusted_providers.remove(trusted)
        self.db.commit()
        self.db.refresh(current_user)

        message = (
            f"You can no longer invoice {current_user.name} directly. "
            "You can still accept requests for their horses in the Schedule tab."
        )
        await create_notification(self.db, [provider_id], message)
        return group_trusted_providers(current_user.trusted_providers)
