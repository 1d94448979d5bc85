"""
JSON shapes returned by the API.
Records go out camelCase with `_id` keys and `_`-prefixed references,
which is what the mobile and admin clients read.
"""

from datetime import date, datetime
from typing import Any, Iterable, Optional

from ..models import Horse, Notification, Request, Show, User
from ..models_invoice import Invoice, Payment, Transaction


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def serialize_user_summary(user: Optional[User]) -> Optional[dict]:
    """Public profile used wherever a user is referenced by another record"""
    if user is None:
        return None
    return {
        "_id": user.id,
        "name": user.name,
        "email": user.email,
        "barn": user.barn,
        "phone": user.phone,
        "location": user.location,
        "avatar": user.avatar,
        "roles": user.roles or [],
        "services": user.services or [],
        "accountSetupComplete": bool(user.account_setup_complete),
        "stripeAccountApproved": user.stripe_account_approved,
    }


def serialize_payment_approval(approval) -> dict:
    return {
        "_id": approval.id,
        "_approver": serialize_user_summary(approval.approver),
        "isUnlimited": bool(approval.is_unlimited),
        "maxAmount": approval.max_amount,
    }


def serialize_trusted_provider(trusted) -> dict:
    return {
        "_id": trusted.id,
        "_provider": serialize_user_summary(trusted.provider),
        "label": trusted.label,
        "customLabel": trusted.custom_label,
    }


def serialize_user(user: Optional[User]) -> Optional[dict]:
    """Full profile, as the user sees themselves"""
    if user is None:
        return None
    data = serialize_user_summary(user)
    data.update(
        {
            "stripeLast4": user.stripe_last4,
            "stripeExpMonth": user.stripe_exp_month,
            "stripeExpYear": user.stripe_exp_year,
            "paymentApprovals": [serialize_payment_approval(a) for a in user.payment_approvals],
            "trustedProviders": [serialize_trusted_provider(t) for t in user.trusted_providers],
            "privateNotes": user.private_notes or [],
        }
    )
    return data


def serialize_owner(owner) -> dict:
    return {"_id": owner.id, "_user": serialize_user_summary(owner.user), "percentage": owner.percentage}


def serialize_dummy_owner(horse: Horse):
    dummy = horse.get_dummy_owner()
    if isinstance(dummy, User):
        return serialize_user_summary(dummy)
    return dummy


def serialize_horse(horse: Optional[Horse]) -> Optional[dict]:
    if horse is None:
        return None
    return {
        "_id": horse.id,
        "barnName": horse.barn_name,
        "showName": horse.show_name,
        "gender": horse.gender,
        "birthYear": horse.birth_year,
        "description": horse.description,
        "color": horse.color,
        "sire": horse.sire,
        "dam": horse.dam,
        "height": horse.height,
        "avatar": horse.avatar,
        "registrations": horse.registrations or [],
        "_owner": serialize_dummy_owner(horse),
        "_owners": [serialize_owner(owner) for owner in horse.owners],
        "_leasedTo": serialize_user_summary(horse.leased_to),
        "_trainer": serialize_user_summary(horse.trainer),
        "_createdBy": serialize_user_summary(horse.created_by),
    }


def serialize_show(show: Optional[Show]) -> Optional[dict]:
    if show is None:
        return None
    return {"_id": show.id, "name": show.name}


def serialize_notification(notification: Notification) -> dict:
    return {
        "_id": notification.id,
        "message": notification.message,
        "_recipients": [recipient.id for recipient in notification.recipients],
        "createdAt": iso(notification.created_at),
    }


def serialize_request(request: Optional[Request]) -> Optional[dict]:
    if request is None:
        return None
    return {
        "_id": request.id,
        "date": iso(request.date),
        "fromCustomInvoice": bool(request.from_custom_invoice),
        "_show": serialize_show(request.show),
        "_horse": serialize_horse(request.horse),
        "_owners": request.owners or [],
        "_horseManager": serialize_user_summary(request.horse_manager),
        "_serviceProvider": serialize_user_summary(request.service_provider),
        "_reassignedTo": serialize_user_summary(request.reassigned_to),
        "_previousReassignees": request.previous_reassignees or [],
        "_payingUser": serialize_user_summary(request.paying_user),
        "_paymentApprovers": [user.id for user in request.payment_approvers],
        "_trainer": serialize_user_summary(request.trainer),
        "_leasedTo": serialize_user_summary(request.leased_to),
        "services": request.services or [],
        "instructions": request.instructions,
        "providerNotes": request.provider_notes,
        "total": request.total,
        "competitionClass": request.competition_class,
        "deletedAt": iso(request.deleted_at),
        "declinedAt": iso(request.declined_at),
        "acceptedAt": iso(request.accepted_at),
        "completedAt": iso(request.completed_at),
        "paidAt": iso(request.paid_at),
        "declinedByHeadServiceProvider": bool(request.declined_by_head_service_provider),
        "_dismissedBy": request.dismissed_by or [],
        "addedToInvoice": bool(request.added_to_invoice),
        "createdAt": iso(request.created_at),
    }


def serialize_transaction(transaction: Transaction) -> dict:
    return {
        "_id": transaction.id,
        "_serviceProvider": transaction.service_provider_id,
        "_paymentSubmittedBy": transaction.payment_submitted_by_id,
        "_payingUser": transaction.paying_user_id,
        "_request": transaction.request_id,
        "stripeTransferAmount": transaction.stripe_transfer_amount,
        "transferId": transaction.transfer_id,
        "transactionId": transaction.transaction_id,
        "transactionDate": iso(transaction.transaction_date),
        "type": transaction.transaction_type,
    }


def serialize_payment(payment: Optional[Payment], with_requests: bool = True) -> Optional[dict]:
    if payment is None:
        return None
    data = {
        "_id": payment.id,
        "_horseManager": serialize_user_summary(payment.horse_manager),
        "_serviceProvider": serialize_user_summary(payment.service_provider),
        "_payingUser": serialize_user_summary(payment.paying_user),
        "_paymentSubmittedBy": serialize_user_summary(payment.payment_submitted_by),
        "_invoice": payment.invoice_id,
        "_approvers": payment.approvers or [],
        "paidOutsideApp": bool(payment.paid_outside_app),
        "date": iso(payment.date),
        "amount": payment.amount,
        "tip": payment.tip,
        "percentOfInvoice": payment.percent_of_invoice,
        "transactions": [serialize_transaction(t) for t in payment.transactions],
        "createdAt": iso(payment.created_at),
    }
    if with_requests:
        data["_requests"] = [serialize_request(request) for request in payment.requests]
    return data


def serialize_invoice(invoice: Optional[Invoice], requests: Optional[Iterable[Request]] = None) -> Optional[dict]:
    if invoice is None:
        return None
    request_list = list(invoice.requests if requests is None else requests)
    return {
        "_id": invoice.id,
        "amount": invoice.amount,
        "tip": invoice.tip,
        "paidOutsideAppAt": iso(invoice.paid_outside_app_at),
        "paidInFullAt": iso(invoice.paid_in_full_at),
        "_owners": invoice.owners or [],
        "_payingUsers": [
            {"_user": serialize_user_summary(payer.user), "percentage": payer.percentage}
            for payer in invoice.paying_users
        ],
        "paymentApprovals": [
            {
                "_approver": serialize_user_summary(approval.approver),
                "_payer": serialize_user_summary(approval.payer),
                "isUnlimited": bool(approval.is_unlimited),
                "maxAmount": approval.max_amount,
            }
            for approval in invoice.payment_approvals
        ],
        "_leasee": serialize_user_summary(invoice.leasee),
        "_horse": serialize_horse(invoice.horse),
        "_requests": [serialize_request(request) for request in request_list],
        "_serviceProvider": serialize_user_summary(invoice.service_provider),
        "_trainer": serialize_user_summary(invoice.trainer),
        "_reassignees": [serialize_user_summary(user) for user in invoice.reassignees],
        "deletedAt": iso(invoice.deleted_at),
        "createdAt": iso(invoice.created_at),
    }


def extract_id(value: Any) -> Optional[int]:
    """Accept a bare id or an embedded {_id: ...} object from a request body"""
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("_id")
        if value is None:
            return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
