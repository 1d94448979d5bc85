"""Invoice service - Business logic for invoices, reminders and exports"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ... import email_service
from ...config import STRIPE_SERVICE_FEE_PERCENTAGE
from ...models import Horse, Request, User, get_horses, get_service_count, get_services, is_manager
from ...models_invoice import Invoice, InvoiceApproval, InvoicePayer, Payment
from ...services import push_service
from ...services.notification_service import send_email_safely
from ...shared.errors import ApiError, EntityNotFound, ModelValidationError
from ...shared.serializers import extract_id, iso, serialize_horse, serialize_invoice, serialize_payment
from ...utils.dates import EXPORT_TZ, format_file_date, format_short_date, parse_date
from ...utils.sanitization import calculate_invoice_total_with_fee, format_amount, unique_emails
from ..requests.service import services_total
from .export import convert_all_to_csv, includes_horses, is_within_date_range
from .repository import InvoiceRepository, is_complete, is_outstanding, paid_by, payable_by, provided_by
from .schemas import ApprovalRequest, ExportRequest, InvoiceCreate, InvoiceUpdate, SubmissionRequest

logger = logging.getLogger(__name__)

DELETED_BY_PROVIDER = "This invoice has been deleted by the main service provider."


# =============================================================================
# Invoice helpers
# =============================================================================


def get_total_for_user(invoice: Invoice, user: User) -> float:
    """Main providers and managers see the whole invoice; reassignees their own requests"""
    if invoice.has_main_service_provider(user) or is_manager(user):
        return invoice.amount + (invoice.tip or 0)
    return sum(request.total or 0 for request in invoice.requests if request.reassigned_to_id == user.id)


def get_invoice_reassignees(requests: list[Request]) -> list[User]:
    reassignees: list[User] = []
    for request in requests:
        reassignee = request.reassigned_to
        if reassignee is not None and all(user.id != reassignee.id for user in reassignees):
            reassignees.append(reassignee)
    return reassignees


def get_payer_users(invoice: Invoice) -> list[User]:
    """Everyone with the ability to pay: paying users, then approvers"""
    users = [payer.user for payer in invoice.paying_users]
    users.extend(approval.approver for approval in invoice.payment_approvals)
    return users


def get_multi_owner_info(invoice: Invoice) -> Optional[list[dict]]:
    """Each owner's share of the fee-inclusive total; None for a single payer"""
    if len(invoice.paying_users) <= 1:
        return None
    total_with_fee = invoice.amount + round(invoice.amount * STRIPE_SERVICE_FEE_PERCENTAGE, 2)
    info = []
    for payer in invoice.paying_users:
        share = payer.percentage / 100
        paid = share * (invoice.tip or 0) + share * total_with_fee
        info.append({"name": payer.user.name, "percentage": payer.percentage, "paidAmount": f"{paid:.2f}"})
    return info


def visible_requests(invoice: Invoice, user: User) -> list[Request]:
    if is_manager(user) or invoice.has_main_service_provider(user):
        return list(invoice.requests)
    return [request for request in invoice.requests if request.reassigned_to_id == user.id]


def invoice_view(invoice: Invoice, user: User, payments: list[Payment]) -> dict:
    """Invoice as the user sees it, with list metadata and its payments"""
    requests = visible_requests(invoice, user)
    data = serialize_invoice(invoice, requests)
    if len(requests) > 1:
        data["minDate"] = iso(min(request.date for request in requests))
        data["maxDate"] = iso(max(request.date for request in requests))
    data["serviceCount"] = get_service_count(requests)
    data["totalForUser"] = get_total_for_user(invoice, user)
    data["_payments"] = [serialize_payment(payment, with_requests=False) for payment in payments]
    data["fromDataMigration"] = invoice.from_data_migration

    # Migrated invoices have no horse of their own; show it when all requests share one
    if invoice.from_data_migration:
        horses = get_horses(invoice.requests)
        if len(horses) == 1:
            data["_horse"] = serialize_horse(horses[0])
    return data


async def email_invoice_receipt(invoice: Invoice) -> None:
    """Paid in full receipts for the payers, the main provider and each reassignee"""
    tip = invoice.tip or 0
    paid_in_full_at = format_short_date(invoice.paid_in_full_at or datetime.utcnow())
    horse_name = getattr(invoice.horse, "barn_name", "")
    trainer_name = getattr(invoice.trainer, "name", "")
    provider = invoice.service_provider
    subtotal = invoice.amount + invoice.amount * STRIPE_SERVICE_FEE_PERCENTAGE

    manager_data = {
        "subtotal": f"{subtotal:.2f}",
        "tip": f"{tip:.2f}",
        "invoiceTotal": f"{round(subtotal, 2) + tip:.2f}",
        "paidInFullAt": paid_in_full_at,
        "horseName": horse_name,
        "trainerName": trainer_name,
        "serviceProviderName": provider.name,
        "serviceProviderEmail": provider.email,
        "serviceCount": get_service_count(invoice.requests),
        "services": get_services(invoice.requests),
        "multipleOwnerInfo": get_multi_owner_info(invoice),
    }
    await send_email_safely(
        email_service.send_invoice_receipt_email,
        "invoice receipt (manager)",
        to=unique_emails(user.email for user in get_payer_users(invoice)),
        data=manager_data,
        audience="manager",
    )

    provider_data = {
        "subtotal": f"{invoice.amount:.2f}",
        "tip": f"{tip:.2f}",
        "invoiceTotal": f"{invoice.amount + tip:.2f}",
        "paidInFullAt": paid_in_full_at,
        "horseName": horse_name,
        "trainerName": trainer_name,
        "serviceCount": get_service_count(invoice.requests),
        "services": get_services(invoice.requests),
    }
    await send_email_safely(
        email_service.send_invoice_receipt_email,
        "invoice receipt (provider)",
        to=provider.email,
        data=provider_data,
        audience="provider",
    )

    for reassignee in invoice.reassignees:
        requests = [request for request in invoice.requests if request.reassigned_to_id == reassignee.id]
        reassignee_data = {
            "invoiceTotal": f"{sum(request.total or 0 for request in requests):.2f}",
            "paidInFullAt": paid_in_full_at,
            "horseName": horse_name,
            "trainerName": trainer_name,
            "serviceCount": get_service_count(requests),
            "serviceProviderName": provider.name,
            "serviceProviderEmail": provider.email,
            "services": get_services(requests),
        }
        await send_email_safely(
            email_service.send_invoice_receipt_email,
            "invoice receipt (reassignee)",
            to=reassignee.email,
            data=reassignee_data,
            audience="reassignee",
        )


class InvoiceService:
    """Service layer for invoice business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = InvoiceRepository()

    def _get_invoice(self, invoice_id: Optional[int]) -> Invoice:
        invoice = self.repo.get_invoice_by_id(self.db, invoice_id)
        if not invoice:
            raise EntityNotFound()
        return invoice

    # =========================================================================
    # Reads
    # =========================================================================

    def get_invoices(
        self,
        current_user: User,
        horse_manager: bool,
        service_provider: bool,
        outstanding: bool,
        complete: bool,
        sort: Optional[str],
        limit: int,
        skip: int,
    ) -> dict:
        filters = [Invoice.deleted_at.is_(None)]
        if outstanding:
            filters.append(is_outstanding())
        elif complete:
            filters.append(is_complete())
            sort = "-paidInFullAt"

        if horse_manager:
            filters.append(payable_by(current_user.id))
        if service_provider:
            filters.append(provided_by([current_user.id]))

        invoices, count = self.repo.find_page(self.db, filters, sort, limit, skip)
        payments = self.repo.get_payments_by_invoice(self.db, [invoice.id for invoice in invoices])
        return {
            "invoices": [invoice_view(invoice, current_user, payments[invoice.id]) for invoice in invoices],
            "invoiceCount": count,
        }

    def get_invoice(self, invoice_id: int) -> dict:
        invoice = self._get_invoice(invoice_id)
        data = serialize_invoice(invoice)
        data["_payments"] = [
            serialize_payment(payment, with_requests=False) for payment in self.repo.get_payments(self.db, invoice.id)
        ]
        data["fromDataMigration"] = invoice.from_data_migration
        return data

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_invoice(self, current_user: User, data: InvoiceCreate) -> dict:
        request_ids = [extract_id(request) for request in data.requests if extract_id(request)]
        requests = self.db.query(Request).filter(Request.id.in_(request_ids)).order_by(Request.date.asc()).all()
        if not requests:
            raise ModelValidationError({"_requests": "Path `_requests` is required."})

        # Only the main provider on every request may invoice them
        if any(request.service_provider_id != current_user.id for request in requests):
            raise ApiError("You do not have permission to create this invoice.")

        horse_id = extract_id(data.horse) or requests[0].horse_id
        horse = self.db.get(Horse, horse_id) if horse_id else None
        if horse is None:
            raise ModelValidationError({"_horse": "Path `_horse` is required."})

        invoice = Invoice(
            amount=round(sum(request.total or 0 for request in requests), 2),
            tip=data.tip or 0,
            owners=horse.owner_snapshot(),
            leasee_id=horse.leased_to_id,
            horse_id=horse.id,
            service_provider_id=current_user.id,
            trainer_id=horse.trainer_id,
            from_data_migration=False,
        )
        invoice.requests = requests
        invoice.reassignees = get_invoice_reassignees(requests)

        # A lessee takes over ownership; with no owners the trainer pays
        if horse.leased_to is not None:
            payers = [(horse.leased_to, 100.0)]
        elif not horse.owners:
            payers = [(horse.trainer, 100.0)]
        else:
            payers = [(owner.user, owner.percentage) for owner in horse.owners]

        invoice.paying_users = [InvoicePayer(user_id=user.id, percentage=percentage) for user, percentage in payers]
        invoice.payment_approvals = [
            InvoiceApproval(
                approver_id=approval.approver_id,
                payer_id=user.id,
                is_unlimited=approval.is_unlimited,
                max_amount=approval.max_amount,
            )
            for user, _ in payers
            for approval in user.payment_approvals
        ]

        for request in requests:
            request.added_to_invoice = True

        self.db.add(invoice)
        self.db.commit()
        self.db.refresh(invoice)
        logger.info(f"🧾 Invoice {invoice.id} created by user {current_user.id} for ${invoice.amount:.2f}")

        await self._notify_invoice_submitted(invoice)
        return serialize_invoice(invoice)

    async def _notify_invoice_submitted(self, invoice: Invoice) -> None:
        horse_name = invoice.horse.barn_name
        provider = invoice.service_provider
        payer_users = get_payer_users(invoice)

        await push_service.send_push_notification(payer_users, f"An invoice for {horse_name} has been submitted.")
        await send_email_safely(
            email_service.send_invoice_submitted_email,
            "invoice submitted",
            to=unique_emails(user.email for user in payer_users),
            invoice={
                "horse": horse_name,
                "createdAt": format_short_date(invoice.created_at),
                "serviceCount": get_service_count(invoice.requests),
                "amount": invoice.amount + invoice.amount * STRIPE_SERVICE_FEE_PERCENTAGE,
                "serviceProviderName": provider.name,
                "serviceProviderEmail": provider.email,
            },
        )

        if not invoice.reassignees:
            return

        await push_service.send_push_notification(
            invoice.reassignees, f"{provider.name} has submitted an invoice for {horse_name}."
        )
        for reassignee in invoice.reassignees:
            requests = [request for request in invoice.requests if request.reassigned_to_id == reassignee.id]
            await send_email_safely(
                email_service.send_invoice_submitted_email,
                "invoice submitted (reassignee)",
                to=reassignee.email,
                for_provider=True,
                invoice={
                    "horse": horse_name,
                    "createdAt": format_short_date(invoice.created_at),
                    "serviceCount": get_service_count(requests),
                    "amount": get_total_for_user(invoice, reassignee),
                    "serviceProviderName": provider.name,
                    "serviceProviderEmail": provider.email,
                    "horseTrainerName": getattr(invoice.trainer, "name", ""),
                    "horseTrainerEmail": getattr(invoice.trainer, "email", ""),
                },
            )

    async def update_invoice(self, current_user: User, invoice_id: int, data: InvoiceUpdate) -> dict:
        invoice = self._get_invoice(invoice_id)
        if self.repo.has_payments(self.db, invoice.id):
            raise ApiError("Invoice cannot be updated once a payment has been made.")

        requests_by_id = {request.id: request for request in invoice.requests}
        for line in data.requests:
            request = requests_by_id.get(extract_id(line.id))
            if request is None or line.services is None:
                continue
            request.services = [service.model_dump() for service in line.services]
            request.total = services_total(request.services)

        invoice.amount = round(sum(request.total or 0 for request in invoice.requests), 2)
        if data.tip is not None:
            invoice.tip = data.tip

        self.db.commit()
        self.db.refresh(invoice)
        logger.info(f"✏️ Invoice {invoice.id} updated to ${invoice.amount:.2f}")

        await push_service.send_push_notification(
            get_payer_users(invoice),
            f"{current_user.name} has updated the invoice for {getattr(invoice.horse, 'barn_name', '')}.",
        )
        return invoice_view(invoice, current_user, [])

    async def delete_invoice(self, current_user: User, invoice_id: int) -> None:
        """Soft delete the invoice and its requests"""
        invoice = self._get_invoice(invoice_id)
        if not invoice.has_main_service_provider(current_user):
            raise ApiError("You are not authorized to delete this invoice.")
        if self.repo.has_payments(self.db, invoice.id):
            raise ApiError("There is already a payment against this invoice.")

        now = datetime.utcnow()
        invoice.deleted_at = now
        for request in invoice.requests:
            request.deleted_at = now
        self.db.commit()
        logger.info(f"🗑️ Invoice {invoice.id} deleted by user {current_user.id}")

        provider_name = invoice.service_provider.name
        for reassignee in invoice.reassignees:
            total = get_total_for_user(invoice, reassignee)
            await push_service.send_push_notification(
                [reassignee], f"Your invoice of ${total:.2f} has been deleted by {provider_name}."
            )

        await push_service.send_push_notification(
            get_payer_users(invoice),
            f"Your invoice of ${calculate_invoice_total_with_fee(invoice)} has been deleted by {provider_name}.",
        )

    # =========================================================================
    # Reminders
    # =========================================================================

    async def request_submission(self, current_user: User, data: SubmissionRequest) -> None:
        """A reassignee nudges the main provider to submit a joint invoice"""
        if not data.requests:
            raise EntityNotFound()
        provider = self.db.get(User, extract_id(data.requests[0].get("_serviceProvider")) or 0)
        if provider is None:
            raise EntityNotFound()

        request_ids = [extract_id(request) for request in data.requests if extract_id(request)]
        live_requests = (
            self.db.query(Request).filter(Request.id.in_(request_ids), Request.deleted_at.is_(None)).count()
        )
        if not live_requests:
            raise ApiError(DELETED_BY_PROVIDER)

        await push_service.send_push_notification(
            [provider],
            f"{current_user.name} has requested an invoice submission. "
            "Please review and submit the joint invoice waiting in your Drafts.",
        )
        await send_email_safely(
            email_service.send_submission_request_email,
            "submission request",
            to=provider.email,
            reassignee_name=current_user.name,
            reassignee_email=current_user.email,
        )

    async def request_approval(self, current_user: User, data: ApprovalRequest, increase: bool = False) -> None:
        """Ask an owner to approve the user as a payer, or to raise their limit"""
        invoice = self._get_invoice(data.invoiceId)
        owner = self.db.get(User, data.ownerId)
        if owner is None:
            raise EntityNotFound()

        total = f"{data.amountOwed:.2f}"
        await send_email_safely(
            email_service.send_approval_request_email,
            "approval increase request" if increase else "approval request",
            to=owner.email,
            increase=increase,
            invoice={
                "date": format_short_date(invoice.created_at),
                "horseManagerName": current_user.name,
                "horseManagerEmail": current_user.email,
                "serviceProviderName": invoice.service_provider.name,
                "serviceProviderEmail": invoice.service_provider.email,
                "serviceCount": get_service_count(invoice.requests),
                "total": total,
            },
        )

        if increase:
            message = (
                f"{current_user.name} does not have the ability to resolve this pending invoice of ${total}. "
                f"Edit {current_user.name}'s maximum approved amount. "
                "You can also resolve the pending payment from your own account."
            )
        else:
            message = (
                f"{current_user.name} does not have the ability to initiate payments on your behalf. "
                "Add them as an approved payer to expedite invoice payments. "
                f"In the meantime, resolve the pending invoice of ${total} via the payments tab."
            )
        await push_service.send_push_notification([owner], message)

    async def request_payment(self, invoice_id: int) -> None:
        """Remind everyone who can pay that the invoice is outstanding"""
        invoice = self._get_invoice(invoice_id)
        if invoice.deleted_at:
            raise ApiError(DELETED_BY_PROVIDER)

        payer_users = get_payer_users(invoice)
        total = invoice.amount + round(invoice.amount * STRIPE_SERVICE_FEE_PERCENTAGE, 2)
        await send_email_safely(
            email_service.send_payment_reminder_email,
            "payment reminder",
            to=unique_emails(user.email for user in payer_users),
            invoice={
                "horse": getattr(invoice.horse, "barn_name", ""),
                "date": format_short_date(invoice.created_at),
                "serviceProviderName": invoice.service_provider.name,
                "serviceProviderEmail": invoice.service_provider.email,
                "serviceCount": get_service_count(invoice.requests),
                "total": total,
            },
        )
        await push_service.send_push_notification(
            payer_users,
            f"Your invoice of ${format_amount(total)} remains outstanding. "
            "Head to the Payments tab to resolve the invoice.",
        )

    # =========================================================================
    # Export
    # =========================================================================

    async def export_to_csv(self, current_user: User, data: ExportRequest) -> str:
        """Email the filtered invoices as CSV; returns the response message"""
        filters = [Invoice.deleted_at.is_(None)]
        if data.userType == "service provider":
            filters.append(provided_by([current_user.id]))
        elif data.userType == "horse manager":
            filters.append(paid_by([current_user.id]))

        provider_ids = [extract_id(p) for p in data.serviceProviders if extract_id(p)]
        if provider_ids:
            filters.append(provided_by(provider_ids))
        manager_ids = [extract_id(m) for m in data.horseManagers if extract_id(m)]
        if manager_ids:
            filters.append(paid_by(manager_ids))

        if data.paymentType == "outstanding":
            filters.append(is_outstanding())
        elif data.paymentType == "complete":
            filters.append(is_complete())

        invoices = self.repo.find_all(self.db, filters, "-paidInFullAt" if data.complete else "-createdAt")

        horse_ids = [extract_id(h) for h in data.horses if extract_id(h)]
        if horse_ids:
            invoices = [invoice for invoice in invoices if includes_horses(invoice, horse_ids)]

        since, until = parse_date(data.sinceDate), parse_date(data.untilDate)
        if since or until:
            invoices = [invoice for invoice in invoices if is_within_date_range(invoice, since, until)]

        if invoices:
            payments = self.repo.get_payments_by_invoice(self.db, [invoice.id for invoice in invoices])
            csv_text = convert_all_to_csv(invoices, current_user, payments)
            filename = f"HorseLinc-Invoice-Export-{format_file_date(datetime.now(EXPORT_TZ))}.csv"
            await send_email_safely(
                email_service.send_invoice_export_email,
                "invoice export",
                to=current_user.email,
                user_name=current_user.name,
                filters=data.model_dump(),
                filename=filename,
                csv_text=csv_text,
            )

        logger.info(f"📤 Invoice export complete: {len(invoices)} invoice(s) for user {current_user.id}")
        return "Invoice export complete" if invoices else "NO INVOICES FOUND"
