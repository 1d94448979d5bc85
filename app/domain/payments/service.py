"""
Payment service - Stripe charges and provider payouts

A payer settles their percentage of an invoice with one charge against their
Stripe customer. The charge funds one transfer per request (to the reassignee
when the request was reassigned, otherwise to the main provider) plus one for
the tip, which always goes to the main provider and carries no service fee.
"""

import logging
from datetime import datetime
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ... import email_service
from ...config import STRIPE_SERVICE_FEE_PERCENTAGE
from ...models import (
    BACKWARDS_COMPATIBILITY_ERROR,
    Request,
    User,
    get_horses,
    get_service_count,
    is_manager,
    is_service_provider,
)
from ...models_invoice import Invoice, Payment, Transaction
from ...services import push_service, stripe_service
from ...services.notification_service import create_notification, send_email_safely
from ...services.stripe_service import StripeError
from ...shared.errors import ApiError, EntityNotFound, ModelValidationError
from ...shared.serializers import extract_id, serialize_horse, serialize_invoice, serialize_payment
from ...utils.dates import format_short_date
from ...utils.sanitization import calculate_invoice_total_with_fee, format_amount
from ..invoices.repository import InvoiceRepository
from ..invoices.service import email_invoice_receipt, get_payer_users
from .repository import PaymentRepository
from .schemas import MarkAsPaidRequest, PaymentCreate, PaymentUpdate, ReportUnapprovedRequest

logger = logging.getLogger(__name__)

CHARGE_FAILED = "Your payment did not go through. Please contact HorseLinc."
PAYOUT_FAILED = (
    "Your payment has been submitted, but it may not have reached its final payee(s). Please contact HorseLinc."
)
PAYMENT_REMINDER = (
    "You have completed requests that are awaiting payment. Please go to the HorseLinc app to submit payment."
)


def owner_percentage(percent_of_invoice: float, amount: float) -> float:
    return (percent_of_invoice / 100) * amount


def to_cents(amount: float) -> int:
    return int(round(round(amount, 2) * 100))


def payment_view(payment: Payment, requests: Optional[list[Request]] = None) -> dict:
    """Payment with its visible requests and the unique horses they cover"""
    data = serialize_payment(payment)
    if requests is not None:
        visible_ids = {request.id for request in requests}
        data["_requests"] = [request_data for request_data in data["_requests"] if request_data["_id"] in visible_ids]
    data["horses"] = [serialize_horse(horse) for horse in get_horses(requests or payment.requests)]
    return data


class PaymentService:
    """Service layer for payment business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PaymentRepository()
        self.invoices = InvoiceRepository()

    def _get_payment(self, payment_id: int) -> Payment:
        payment = self.repo.get_payment_by_id(self.db, payment_id)
        if not payment:
            raise EntityNotFound()
        return payment

    # =========================================================================
    # Reads
    # =========================================================================

    def get_payments(
        self,
        current_user: User,
        horse_manager: bool,
        service_provider: bool,
        sort: Optional[str],
        limit: int,
        skip: int,
    ) -> dict:
        if horse_manager:
            payments, count = self.repo.find_for_manager(self.db, current_user.id, sort, limit, skip)
            views = [payment_view(payment) for payment in payments]
        elif service_provider:
            payments, count = self.repo.find_for_provider(self.db, current_user.id, sort, limit, skip)
            views = []
            for payment in payments:
                mine = [
                    request
                    for request in payment.requests
                    if current_user.id in (request.service_provider_id, request.reassigned_to_id)
                ]
                views.append(payment_view(payment, mine))
        else:
            return {"payments": [], "paymentCount": 0}

        return {"payments": views, "paymentCount": count}

    def get_payment(self, current_user: User, payment_id: int) -> dict:
        payment = self._get_payment(payment_id)
        requests = list(payment.requests)
        display_tip = is_manager(current_user)

        if is_service_provider(current_user):
            requests = [
                request
                for request in requests
                if current_user.id in (request.service_provider_id, request.reassigned_to_id)
            ]
            # The tip is paid out to the main provider
            if any(request.service_provider_id == current_user.id for request in requests):
                display_tip = True

        data = payment_view(payment, requests)
        data["displayTip"] = display_tip
        return data

    async def request_payment(self, request_ids: list[int]) -> None:
        """Remind the trainers of unpaid requests to submit payment"""
        requests = self.repo.get_unpaid_requests(self.db, request_ids)
        if not requests:
            raise ApiError("All these requests have been paid! Refresh to see changes.")
        await push_service.send_push_notification([request.trainer for request in requests], PAYMENT_REMINDER)

    # =========================================================================
    # Charge and payouts
    # =========================================================================

    def _validate_payer(self, current_user: User, invoice: Invoice, data: PaymentCreate) -> User:
        paying_user_id = extract_id(data.payingUser)
        if not paying_user_id:
            raise ApiError(BACKWARDS_COMPATIBILITY_ERROR)

        paying_user = self.db.get(User, paying_user_id)
        if paying_user is None:
            raise ApiError("Sorry, we couldn't find that user.")

        if not paying_user.stripe_customer_id or not paying_user.account_setup_complete:
            if paying_user.id == current_user.id:
                raise ApiError("You need to complete your payment information in your profile before you may proceed.")
            raise ApiError(
                f"{paying_user.name} needs to complete their payment information in their profile before you may proceed."
            )

        if invoice.get_paying_user(paying_user) is None:
            raise ApiError(f"{paying_user.name} is not a payer on this invoice.")

        if self.repo.has_payment_for_payer(self.db, invoice.id, paying_user.id):
            raise ApiError(f"A payment has already been made against this invoice for {paying_user.name}")

        return paying_user

    async def create_payment(self, current_user: User, data: PaymentCreate) -> dict:
        """Charge the payer's share and pay it out; returns {message, payment}"""
        invoice = self.invoices.get_invoice_by_id(self.db, extract_id(data.invoice))
        if invoice is None:
            raise EntityNotFound()
        if invoice.deleted_at:
            raise ApiError("This invoice has been deleted.")

        paying_user = self._validate_payer(current_user, invoice, data)
        percent = invoice.get_paying_user(paying_user).percentage

        payment = Payment(
            service_provider_id=invoice.service_provider_id,
            paying_user_id=paying_user.id,
            payment_submitted_by_id=current_user.id,
            date=datetime.utcnow(),
            amount=owner_percentage(percent, invoice.amount),
            tip=owner_percentage(percent, data.tip or 0),
            invoice_id=invoice.id,
            percent_of_invoice=percent,
            approvers=[a.approver_id for a in invoice.payment_approvals if a.payer_id == paying_user.id],
        )
        payment.requests = list(invoice.requests)
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)

        running_total = 0.0
        pending_transfers: list[tuple[int, User, Optional[Request]]] = []
        reassignee_amounts: dict[int, float] = {}

        for request in invoice.requests:
            share = owner_percentage(percent, request.total or 0)
            running_total += share + share * STRIPE_SERVICE_FEE_PERCENTAGE

            destination = request.reassigned_to or request.service_provider
            if request.reassigned_to_id:
                reassignee_amounts[request.reassigned_to_id] = reassignee_amounts.get(request.reassigned_to_id, 0) + share
            pending_transfers.append((to_cents(share), destination, request))

        if payment.tip and payment.tip > 0:
            running_total += payment.tip
            pending_transfers.append((to_cents(payment.tip), invoice.service_provider, None))

        charge = await self._charge(payment, invoice, paying_user, current_user, running_total, data.uuid)

        failed_payouts = 0
        for amount, destination, request in pending_transfers:
            transfer_id = ""
            try:
                transfer = await stripe_service.create_transfer(amount, destination.stripe_seller_id, charge["id"])
                transfer_id = transfer.get("id", "")
            except (StripeError, httpx.HTTPError) as e:
                failed_payouts += 1
                logger.error(f"❌ Payout of {amount} cents to user {destination.id} failed: {e}")
                await self._report_payout_failure(invoice, request)

            payment.transactions.append(
                Transaction(
                    transaction_type="request" if request else "tip",
                    request_id=request.id if request else None,
                    service_provider_id=destination.id,
                    payment_submitted_by_id=current_user.id,
                    paying_user_id=paying_user.id,
                    transfer_id=transfer_id,
                    transaction_id=charge["id"],
                    transaction_date=datetime.utcnow(),
                    stripe_transfer_amount=amount / 100,
                )
            )
            self.db.commit()

        await self._notify_payment(current_user, paying_user, payment, invoice, running_total, reassignee_amounts)

        payment_count = len(self.repo.get_payments_for_invoice(self.db, invoice.id))
        if payment_count == 1:
            invoice.tip = data.tip or 0
        if payment_count >= len(invoice.paying_users):
            now = datetime.utcnow()
            invoice.paid_in_full_at = now
            for request in invoice.requests:
                request.paid_at = now
        self.db.commit()
        self.db.refresh(payment)

        if invoice.paid_in_full_at:
            logger.info(f"✅ Invoice {invoice.id} paid in full")
            await email_invoice_receipt(invoice)

        if failed_payouts:
            message = PAYOUT_FAILED
        elif invoice.paid_in_full_at:
            message = "Invoice paid in full"
        else:
            message = "Payment successful"
        return {"message": message, "payment": serialize_payment(payment)}

    async def _charge(
        self,
        payment: Payment,
        invoice: Invoice,
        paying_user: User,
        current_user: User,
        total: float,
        idempotency_key: Optional[str],
    ) -> dict:
        """Charge the payer; on failure alert the admin and undo the payment"""
        error_message = None
        try:
            charge = await stripe_service.create_charge(
                int(round(total * 100)), paying_user.stripe_customer_id, paying_user.email, idempotency_key
            )
            error_message = charge.get("failure_message")
        except (StripeError, httpx.HTTPError) as e:
            charge = None
            error_message = getattr(e, "message", None) or CHARGE_FAILED

        if charge and not error_message:
            logger.info(f"💳 Charged user {paying_user.id} ${total:.2f} for invoice {invoice.id}")
            return charge

        logger.error(f"❌ Charge of ${total:.2f} for invoice {invoice.id} failed: {error_message}")
        await send_email_safely(
            email_service.send_charge_failure_email,
            "charge failure",
            payment={
                "id": payment.id,
                "invoiceId": invoice.id,
                "payingUser": paying_user.email,
                "submittedBy": current_user.email,
                "amount": round(total, 2),
            },
            error_message=error_message,
        )

        self.db.delete(payment)
        invoice.paid_in_full_at = None
        self.db.commit()
        raise ApiError(error_message or CHARGE_FAILED)

    async def _report_payout_failure(self, invoice: Invoice, request: Optional[Request]) -> None:
        """Email the admin (blind copying the provider) and push to everyone on the invoice"""
        provider = invoice.service_provider
        info = {
            "invoiceDate": format_short_date(invoice.created_at),
            "invoiceId": invoice.id,
            "mainServiceProviderName": provider.name,
            "mainServiceProviderEmail": provider.email,
            "horseTrainerName": getattr(invoice.trainer, "name", ""),
            "serviceProviderName": "your",
            "total": f"{invoice.amount:.2f}",
            "serviceCount": get_service_count(invoice.requests),
        }

        if request is None:
            await send_email_safely(email_service.send_payout_failure_email, "payout failure", info=info, bcc=provider.email)
        elif request.reassigned_to is not None:
            reassignee = request.reassigned_to
            info["requestId"] = request.id
            main_info = {**info, "serviceProviderName": f"{reassignee.name}'s"}
            await send_email_safely(
                email_service.send_payout_failure_email, "payout failure", info=main_info, bcc=provider.email
            )

            requests = [r for r in invoice.requests if r.reassigned_to_id == reassignee.id]
            reassignee_info = {
                **info,
                "total": f"{sum(r.total or 0 for r in requests):.2f}",
                "serviceCount": get_service_count(requests),
            }
            await send_email_safely(
                email_service.send_payout_failure_email, "payout failure", info=reassignee_info, bcc=reassignee.email
            )
        else:
            info["requestId"] = request.id
            await send_email_safely(
                email_service.send_payout_failure_email,
                "payout failure",
                info=info,
                bcc=request.service_provider.email,
            )

        invoice_total = invoice.amount + (invoice.tip or 0)
        service_fee = round(invoice.amount * STRIPE_SERVICE_FEE_PERCENTAGE, 2)
        await push_service.send_push_notification(
            [provider],
            "We've encountered an error transferring the funds for your paid invoice of "
            f"${invoice_total:.2f}. We are actively working to correct this error.",
        )
        await push_service.send_push_notification(
            get_payer_users(invoice),
            "We've encountered an error transferring the funds for your paid invoice of "
            f"${invoice_total + service_fee:.2f}. We are actively working to correct this error.",
        )

    async def _notify_payment(
        self,
        current_user: User,
        paying_user: User,
        payment: Payment,
        invoice: Invoice,
        total: float,
        reassignee_amounts: dict[int, float],
    ) -> None:
        if paying_user.id != current_user.id:
            await create_notification(
                self.db, [paying_user], f"{current_user.name} has made a payment of ${total:.2f} on your behalf."
            )

        provider_total = payment.amount + (payment.tip or 0)
        await push_service.send_push_notification(
            [invoice.service_provider], f"{paying_user.name} has made a payment of ${provider_total:.2f}."
        )

        for reassignee in invoice.reassignees:
            amount = reassignee_amounts.get(reassignee.id, 0)
            await push_service.send_push_notification(
                [reassignee], f"{paying_user.name} has made a payment of ${amount:.2f}."
            )

    # =========================================================================
    # Outside the app
    # =========================================================================

    async def mark_as_paid(self, current_user: User, data: MarkAsPaidRequest) -> dict:
        """The main provider records payment received outside the app"""
        invoice = self.invoices.get_invoice_by_id(self.db, extract_id(data.invoice))
        if invoice is None:
            raise ApiError(BACKWARDS_COMPATIBILITY_ERROR)
        if invoice.paid_in_full_at:
            raise ApiError("This invoice has already been paid.")
        if not invoice.has_main_service_provider(current_user):
            raise ApiError("You are not authorized to mark invoice as paid.")

        now = datetime.utcnow()
        paid_user_ids = {payment.paying_user_id for payment in self.repo.get_payments_for_invoice(self.db, invoice.id)}
        for payer in invoice.paying_users:
            if payer.user_id in paid_user_ids:
                continue
            payment = Payment(
                paid_outside_app=True,
                date=now,
                amount=owner_percentage(payer.percentage, invoice.amount),
                tip=owner_percentage(payer.percentage, invoice.tip or 0),
                service_provider_id=current_user.id,
                invoice_id=invoice.id,
                paying_user_id=payer.user_id,
                percent_of_invoice=payer.percentage,
            )
            payment.requests = list(invoice.requests)
            self.db.add(payment)

        invoice.paid_outside_app_at = now
        invoice.paid_in_full_at = now
        for request in invoice.requests:
            request.paid_at = now
        self.db.commit()
        self.db.refresh(invoice)
        logger.info(f"✅ Invoice {invoice.id} marked as paid outside the app by user {current_user.id}")

        await email_invoice_receipt(invoice)
        await push_service.send_push_notification(
            get_payer_users(invoice),
            f"{current_user.name} has marked your invoice totaling ${calculate_invoice_total_with_fee(invoice)} as paid!",
        )
        for reassignee in invoice.reassignees:
            total = sum(request.total or 0 for request in invoice.requests if request.reassigned_to_id == reassignee.id)
            await push_service.send_push_notification(
                [reassignee], f"{current_user.name} has marked your invoice totaling ${format_amount(total)} as paid!"
            )

        return serialize_invoice(invoice)

    async def report_unapproved(self, data: ReportUnapprovedRequest) -> None:
        """Tell the payer a pending invoice is over their approver's limit"""
        if not data.requests:
            raise ModelValidationError({"requests": "Path `requests` is required."})

        info = data.requests[0]
        total_plus_fees = round(info.total + info.total * STRIPE_SERVICE_FEE_PERCENTAGE, 2)
        await send_email_safely(
            email_service.send_over_approver_limit_email,
            "over approver limit",
            to=info.payingUser.get("email"),
            invoice={
                "total": total_plus_fees,
                "tip": info.tipAmount,
                "totalWithTip": round(total_plus_fees + info.tipAmount, 2),
                "approverName": info.currentUser.get("name"),
                "approverEmail": info.currentUser.get("email"),
                "approvalMaxAmount": info.approvedMax,
            },
        )

    def update_payment(self, payment_id: int, data: PaymentUpdate) -> dict:
        payment = self._get_payment(payment_id)
        if data.amount is not None:
            payment.amount = data.amount
        if data.tip is not None:
            payment.tip = data.tip
        if data.percentOfInvoice is not None:
            payment.percent_of_invoice = data.percentOfInvoice
        if data.paidOutsideApp is not None:
            payment.paid_outside_app = data.paidOutsideApp
        self.db.commit()
        self.db.refresh(payment)
        return serialize_payment(payment)
