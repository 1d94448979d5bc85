"""
CSV export of invoices
Rows are written for the user requesting the export: managers see totals with
the service fee applied, reassignees only see the requests they performed.
"""

from datetime import datetime
from typing import Optional

from ...models import User, is_manager, is_service_provider
from ...models_invoice import Invoice, Payment
from ...utils.dates import format_export_date, start_of_day
from ...utils.sanitization import add_service_fee

# Invoices created before this date pre-date invoicing; their requests carry the real dates
NEW_VERSION_DATE = datetime(2018, 8, 24)
OUTSTANDING_PAYMENT_DATE = "12/31/9999"

MANAGER_HEADERS = (
    "Payment Type, Invoice Date, Payment Date, Invoice Total, Tip Amount, Total Amount Paid, "
    "Amount Paid By Me, Paid By, Service Provider, Reassigned To, Description"
)
PROVIDER_HEADERS = (
    "Payment Type, Invoice Date, Payment Date, Invoice Total, Tip Amount, Total Amount Paid, "
    "Paid By, Reassigned To, Description"
)


def _naive(value: datetime) -> datetime:
    return value.replace(tzinfo=None) if value.tzinfo else value


def _reference_date(invoice: Invoice) -> datetime:
    created_at = _naive(invoice.created_at)
    if created_at > NEW_VERSION_DATE or not invoice.requests:
        return created_at
    return _naive(invoice.requests[0].created_at)


def _reassigned_total(requests, user: User) -> float:
    return sum(request.total or 0 for request in requests if request.reassigned_to_id == user.id)


def get_payment_type(invoice: Invoice) -> str:
    if invoice.paid_in_full_at or invoice.paid_outside_app_at:
        return "COMPLETE"
    return "OUTSTANDING"


def get_invoice_date(invoice: Invoice) -> str:
    return format_export_date(_reference_date(invoice))


def get_payment_date(invoice: Invoice) -> str:
    if invoice.paid_outside_app_at:
        return format_export_date(invoice.paid_outside_app_at)
    if invoice.paid_in_full_at:
        return format_export_date(invoice.paid_in_full_at)
    return OUTSTANDING_PAYMENT_DATE


def get_invoice_total(invoice: Invoice, user: User) -> str:
    reassigned = invoice.is_reassigned_to_user(user)
    if not reassigned and invoice.amount:
        if is_manager(user):
            return f"{add_service_fee(invoice.amount):.2f}"
        return f"{invoice.amount:.2f}"
    if reassigned:
        return f"{_reassigned_total(invoice.requests, user):.2f}"
    return "0"


def get_invoice_tip(invoice: Invoice, user: User) -> str:
    if invoice.tip and not invoice.is_reassigned_to_user(user):
        return f"{invoice.tip:.2f}"
    return "0"


def get_total_amount_paid(invoice: Invoice, user: User, payments: list[Payment]) -> str:
    if not invoice.is_reassigned_to_user(user):
        total = 0.0
        for payment in payments:
            total += add_service_fee(payment.amount) if is_manager(user) else payment.amount
            total += payment.tip or 0
        return f"{total:.2f}"

    total = sum(_reassigned_total(payment.requests, user) for payment in payments)
    return f"{total:.2f}"


def get_amount_paid_by_user(
    invoice: Invoice, payer_id: int, for_manager: bool, requesting_user: User, payments: list[Payment]
) -> str:
    """What one paying user has paid so far, seen by the requesting user"""
    amount_paid = 0.0
    if any(payer.user_id == payer_id for payer in invoice.paying_users):
        # Older payments name a horse manager, newer ones the paying user
        payment = next(
            (p for p in payments if p.horse_manager_id == payer_id or p.paying_user_id == payer_id),
            None,
        )
        if payment and not invoice.is_reassigned_to_user(requesting_user):
            tip = payment.tip or 0
            amount_paid += add_service_fee(payment.amount) + tip if for_manager else payment.amount + tip
        elif payment:
            amount_paid += _reassigned_total(payment.requests, requesting_user)
    return f"{amount_paid:.2f}"


def get_invoice_payers(invoice: Invoice, user: User, payments: list[Payment]) -> str:
    if not invoice.paying_users:
        return "N/A"
    return "; ".join(
        f"{payer.user.name} ({get_amount_paid_by_user(invoice, payer.user_id, is_manager(user), user, payments)} paid)"
        for payer in invoice.paying_users
    )


def get_payer_names(invoice: Invoice) -> str:
    return "; ".join(payer.user.name or "" for payer in invoice.paying_users)


def get_main_service_provider_name(invoice: Invoice) -> str:
    return getattr(invoice.service_provider, "name", None) or "N/A"


def get_reassignee_names(invoice: Invoice) -> str:
    if not invoice.reassignees:
        return "N/A"
    return "; ".join(reassignee.name or "" for reassignee in invoice.reassignees)


def get_horses_and_services(invoice: Invoice, user: User) -> str:
    if not invoice.requests:
        return "N/A"

    reassigned = invoice.is_reassigned_to_user(user)
    sections = []
    for request in invoice.requests:
        if reassigned and request.reassigned_to_id != user.id:
            continue
        plural = "" if len(request.services or []) == 1 else "s"
        if request.horse is not None:
            heading = f"Service{plural} for {request.horse.show_name} ({request.horse.barn_name}) - "
        else:
            heading = f"Service{plural} for [HORSE DELETED FROM APP] - "

        lines = []
        for service in request.services or []:
            quantity = service.get("quantity") or 1
            rate = quantity * float(service.get("rate") or 0)
            if is_manager(user):
                rate = add_service_fee(rate)
            lines.append(f"{service.get('service')} (x{quantity}): {rate:.2f}")
        sections.append(heading + "; ".join(lines))
    return "; ".join(sections)


def _joined_notes(invoice: Invoice, attribute: str) -> str:
    if not invoice.requests:
        return "N/A"
    return "... ".join(getattr(r, attribute) for r in invoice.requests if getattr(r, attribute))


def get_description(invoice: Invoice, user: User) -> str:
    """Quoted free-text column: horses and services, instructions, notes and payers"""
    sections = [get_horses_and_services(invoice, user)]

    instructions = _joined_notes(invoice, "instructions")
    if instructions:
        sections.append(f"Instructions: {instructions}")

    provider_notes = _joined_notes(invoice, "provider_notes")
    if is_service_provider(user) and provider_notes:
        sections.append(f"Notes: {provider_notes}")

    plural = "" if len(invoice.paying_users) == 1 else "s"
    sections.append(f"Payer{plural}: {get_payer_names(invoice)}")
    return '"' + "... ".join(sections) + '"'


def to_csv_row(invoice: Invoice, user: User, payments: list[Payment]) -> str:
    columns = [
        get_payment_type(invoice),
        get_invoice_date(invoice),
        get_payment_date(invoice),
        get_invoice_total(invoice, user),
        get_invoice_tip(invoice, user),
        get_total_amount_paid(invoice, user, payments),
    ]
    if is_manager(user):
        columns.append(get_amount_paid_by_user(invoice, user.id, True, user, payments))
    columns.append(get_invoice_payers(invoice, user, payments))
    if is_manager(user):
        columns.append(get_main_service_provider_name(invoice))
    columns.append(get_reassignee_names(invoice))
    columns.append(get_description(invoice, user))
    return ",".join(columns)


def get_csv_headers(user: User) -> str:
    return MANAGER_HEADERS if is_manager(user) else PROVIDER_HEADERS


def _sort_date(value: str) -> datetime:
    return datetime.strptime(value, "%m/%d/%Y")


def convert_all_to_csv(invoices: list[Invoice], user: User, payments_by_invoice: dict[int, list[Payment]]) -> str:
    """
    Header plus one row per invoice, newest first: managers by invoice date,
    providers by payment date (outstanding invoices first).
    """
    date_of = get_invoice_date if is_manager(user) else get_payment_date

    def key(invoice: Invoice) -> datetime:
        return _sort_date(date_of(invoice))

    rows = [
        to_csv_row(invoice, user, payments_by_invoice.get(invoice.id, []))
        for invoice in sorted(invoices, key=key, reverse=True)
    ]
    return "\r\n".join([get_csv_headers(user), *rows]).strip()


def includes_horses(invoice: Invoice, horse_ids: list[int]) -> bool:
    """True when any of the horses appears on the invoice or, for old invoices, its requests"""
    if invoice.horse_id:
        invoice_horse_ids = [invoice.horse_id]
    else:
        invoice_horse_ids = [request.horse_id for request in invoice.requests if request.horse_id]
    return any(horse_id in invoice_horse_ids for horse_id in horse_ids)


def is_within_date_range(invoice: Invoice, since: Optional[datetime], until: Optional[datetime]) -> bool:
    compared = start_of_day(_reference_date(invoice))
    if since and compared < since:
        return False
    if until and compared > until:
        return False
    return True
