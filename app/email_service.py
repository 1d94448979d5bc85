"""
Email Service using Resend
Provides email functionality using MJML templates for responsive design
"""

import base64
import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import ADMIN_EMAIL, BASE_URL, EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    approval_increase_requested_template,
    approval_requested_template,
    charge_failure_template,
    invoice_export_template,
    invoice_receipt_manager_template,
    invoice_receipt_provider_template,
    invoice_receipt_reassignee_template,
    invoice_submitted_manager_template,
    invoice_submitted_provider_template,
    over_approver_limit_template,
    password_changed_template,
    password_reset_template,
    payment_reminder_template,
    payout_failure_template,
    stripe_activity_template,
    submission_request_template,
)
from .utils.sanitization import build_email_string, unique_emails

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns a dict with 'html' and 'errors' keys
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        if hasattr(result, "html"):
            return result.html
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise Exception(f"Failed to compile MJML template: {str(e)}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
    attachments: Optional[list[dict]] = None,
    bcc: Optional[list[str]] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address
        attachments: Optional list of {"filename", "content"} dicts
        bcc: Optional blind copy recipients

    Returns:
        Send response dict
    """
    recipients = unique_emails([to] if isinstance(to, str) else to)
    if not recipients:
        logger.warning(f"⚠️ No recipients for '{subject}' - skipping")
        return {}

    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise Exception("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)

    try:
        logger.info(f"📧 Sending '{subject}' via Resend to: {build_email_string(recipients)}")
        email_data = {
            "from": from_address or EMAIL_FROM_ADDRESS,
            "to": recipients,
            "subject": subject,
            "html": html_content,
        }

        if bcc:
            email_data["bcc"] = [address for address in bcc if address]

        if attachments:
            email_data["attachments"] = [
                {"filename": attachment["filename"], "content": attachment["content"]}
                for attachment in attachments
            ]

        response = resend.Emails.send(email_data)
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise Exception(f"Failed to send email: {str(e)}") from e


# ============================================
# Account emails
# ============================================


async def send_password_reset_email(to: str, token: str) -> dict:
    reset_link = f"{BASE_URL}/reset-password?token={token}"
    return await send_email(to=to, subject="Password Reset", mjml_content=password_reset_template(reset_link))


async def send_password_changed_email(to: str) -> dict:
    return await send_email(to=to, subject="Password Reset", mjml_content=password_changed_template())


async def send_stripe_activity_email(event: dict, connect: bool) -> dict:
    """Forward a Stripe webhook event to the admin inbox"""
    title = "Stripe Connect Account Activity" if connect else "Stripe Master Account Activity"
    return await send_email(to=ADMIN_EMAIL, subject=title, mjml_content=stripe_activity_template(title, event))


# ============================================
# Invoice emails
# ============================================


async def send_invoice_submitted_email(to: Union[str, list[str]], invoice: dict, for_provider: bool = False) -> dict:
    template = invoice_submitted_provider_template if for_provider else invoice_submitted_manager_template
    return await send_email(to=to, subject="HorseLinc - Invoice Submitted", mjml_content=template(invoice))


async def send_submission_request_email(to: str, reassignee_name: str, reassignee_email: str) -> dict:
    return await send_email(
        to=to,
        subject="HorseLinc - Request For Invoice Submission",
        mjml_content=submission_request_template(reassignee_name, reassignee_email),
    )


async def send_approval_request_email(to: str, invoice: dict, increase: bool = False) -> dict:
    if increase:
        return await send_email(
            to=to,
            subject="HorseLinc - Invoice Over Payment Approver Limit",
            mjml_content=approval_increase_requested_template(invoice),
        )
    return await send_email(
        to=to,
        subject="HorseLinc - Approval Requested for Outstanding Invoice",
        mjml_content=approval_requested_template(invoice),
    )


async def send_payment_reminder_email(to: Union[str, list[str]], invoice: dict) -> dict:
    return await send_email(
        to=to,
        subject="HorseLinc - Payment Reminder for Outstanding Invoice",
        mjml_content=payment_reminder_template(invoice),
    )


async def send_invoice_export_email(to: str, user_name: str, filters: dict, filename: str, csv_text: str) -> dict:
    """Mail the CSV export as an attachment"""
    return await send_email(
        to=to,
        subject="Your HorseLinc Invoice Export is Ready",
        mjml_content=invoice_export_template(user_name, filters),
        attachments=[
            {
                "filename": filename,
                "content": base64.b64encode(csv_text.encode("utf-8")).decode("ascii"),
            }
        ],
    )


async def send_invoice_receipt_email(to: Union[str, list[str]], data: dict, audience: str = "manager") -> dict:
    """Paid in full receipt; audience is manager, provider or reassignee"""
    templates = {
        "manager": invoice_receipt_manager_template,
        "provider": invoice_receipt_provider_template,
        "reassignee": invoice_receipt_reassignee_template,
    }
    return await send_email(
        to=to, subject="HorseLinc - Invoice Paid In Full", mjml_content=templates[audience](data)
    )


# ============================================
# Payment emails
# ============================================


async def send_payout_failure_email(info: dict, bcc: Optional[str] = None) -> dict:
    """Admin alert, blind copied to the provider whose payout failed"""
    return await send_email(
        to=ADMIN_EMAIL,
        subject="Stripe Payout Failure",
        mjml_content=payout_failure_template(info),
        bcc=[bcc] if bcc else None,
    )


async def send_charge_failure_email(payment: dict, error_message: str) -> dict:
    return await send_email(
        to=ADMIN_EMAIL,
        subject="Stripe Charge Failure",
        mjml_content=charge_failure_template(payment, error_message),
    )


async def send_over_approver_limit_email(to: str, invoice: dict) -> dict:
    return await send_email(
        to=to,
        subject="Pending Invoice Over Trainer's Approved Limit",
        mjml_content=over_approver_limit_template(invoice),
    )
