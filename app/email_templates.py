"""
MJML Email Templates
All HorseLinc transactional emails share one branded layout
"""

from typing import Optional

THEME = {
    "primary": "#1f4e79",
    "primary_light": "#e8f0f8",
    "background": "#f6f7f9",
    "text_primary": "#111827",
    "text_secondary": "#374151",
    "text_muted": "#6b7280",
    "border": "#e5e7eb",
    "danger": "#b91c1c",
}

LOGO_URL = "https://horselinc.com/assets/horselinc-logo.png"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button href="{cta_url}" background-color="{THEME['primary']}" color="#ffffff"
              font-weight="600" border-radius="6px" padding="16px 36px" font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="15px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="28px 20px">
          <mj-column>
            <mj-image src="{LOGO_URL}" alt="HorseLinc" width="150px" padding="0" />
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="0 36px 40px 36px">
          <mj-column>
            <mj-text font-size="22px" font-weight="600" color="{THEME['text_primary']}" padding="0 0 16px 0">
              {title}
            </mj-text>
            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="28px 20px">
          <mj-column>
            <mj-text align="center" font-size="12px" color="{THEME['text_muted']}">
              You're receiving this because you have a HorseLinc account.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _paragraph(text: str) -> str:
    return f"<mj-text>{text}</mj-text>"


def _details_table(rows: list[tuple[str, object]]) -> str:
    """Two column label/value table"""
    body = "".join(
        f'<tr><td style="padding:6px 0;color:{THEME["text_muted"]}">{label}</td>'
        f'<td style="padding:6px 0;text-align:right;font-weight:600">{value}</td></tr>'
        for label, value in rows
    )
    return f"""
    <mj-table font-size="14px" padding="8px 0 16px 0" color="{THEME['text_secondary']}">
      {body}
    </mj-table>
    """


def _services_table(services: list[dict]) -> str:
    rows = [
        (f"{svc.get('service')} (x{svc.get('quantity') or 1})", f"${float(svc.get('rate') or 0):.2f}")
        for svc in services
    ]
    return _details_table(rows) if rows else ""


# ============================================================================
# ACCOUNT
# ============================================================================


def password_reset_template(reset_link: str) -> str:
    content = _paragraph(
        "We received a request to reset your HorseLinc password. "
        "This link expires in one hour."
    ) + _paragraph("If you didn't request this, you can safely ignore this email.")
    return get_base_template(
        title="Password Reset",
        preview_text="Reset your HorseLinc password",
        content_sections=content,
        cta_url=reset_link,
        cta_label="Reset Password",
    )


def password_changed_template() -> str:
    return get_base_template(
        title="Password Reset",
        preview_text="Your password has been reset",
        content_sections=_paragraph("Hello,<br/><br/>This is a confirmation your password has been reset."),
    )


def stripe_activity_template(title: str, event: dict) -> str:
    """Raw Stripe webhook summary sent to the HorseLinc admin"""
    data_object = (event.get("data") or {}).get("object") or {}
    rows = [
        ("Event", event.get("type", "unknown")),
        ("Event ID", event.get("id", "")),
        ("Account", event.get("account", "platform")),
        ("Object", data_object.get("object", "")),
        ("Object ID", data_object.get("id", "")),
    ]
    if "amount" in data_object:
        rows.append(("Amount", f"${(data_object.get('amount') or 0) / 100:.2f}"))
    return get_base_template(
        title=title,
        preview_text=f"Stripe event {event.get('type', '')}",
        content_sections=_details_table(rows),
    )


# ============================================================================
# INVOICES
# ============================================================================


def invoice_submitted_manager_template(invoice: dict) -> str:
    content = _paragraph(
        f"{invoice['serviceProviderName']} has submitted an invoice for {invoice['horse']}."
    ) + _details_table(
        [
            ("Date", invoice["createdAt"]),
            ("Services", invoice["serviceCount"]),
            ("Total", f"${invoice['amount']:.2f}"),
            ("Service Provider", f"{invoice['serviceProviderName']} ({invoice['serviceProviderEmail']})"),
        ]
    )
    return get_base_template(
        title="Invoice Submitted",
        preview_text=f"New invoice for {invoice['horse']}",
        content_sections=content + _paragraph("Head to the Payments tab in the HorseLinc app to pay."),
    )


def invoice_submitted_provider_template(invoice: dict) -> str:
    content = _paragraph(
        f"{invoice['serviceProviderName']} has submitted a joint invoice for {invoice['horse']} "
        "that includes your services."
    ) + _details_table(
        [
            ("Date", invoice["createdAt"]),
            ("Your Services", invoice["serviceCount"]),
            ("Your Total", f"${invoice['amount']:.2f}"),
            ("Trainer", f"{invoice['horseTrainerName']} ({invoice['horseTrainerEmail']})"),
        ]
    )
    return get_base_template(
        title="Invoice Submitted",
        preview_text=f"Joint invoice for {invoice['horse']}",
        content_sections=content,
    )


def submission_request_template(reassignee_name: str, reassignee_email: str) -> str:
    content = _paragraph(
        f"{reassignee_name} ({reassignee_email}) has requested an invoice submission. "
        "Please review and submit the joint invoice waiting in your Drafts."
    )
    return get_base_template(
        title="Request For Invoice Submission",
        preview_text="A joint invoice is waiting in your Drafts",
        content_sections=content,
    )


def approval_requested_template(invoice: dict) -> str:
    content = _paragraph(
        f"{invoice['horseManagerName']} ({invoice['horseManagerEmail']}) does not have the ability to "
        "initiate payments on your behalf. Add them as an approved payer to expedite invoice payments."
    ) + _details_table(
        [
            ("Invoice Date", invoice["date"]),
            ("Service Provider", f"{invoice['serviceProviderName']} ({invoice['serviceProviderEmail']})"),
            ("Services", invoice["serviceCount"]),
            ("Amount Owed", f"${invoice['total']}"),
        ]
    )
    return get_base_template(
        title="Approval Requested for Outstanding Invoice",
        preview_text="An invoice is waiting for your approval",
        content_sections=content,
    )


def approval_increase_requested_template(invoice: dict) -> str:
    content = _paragraph(
        f"{invoice['horseManagerName']} ({invoice['horseManagerEmail']}) does not have the ability to "
        f"resolve this pending invoice of ${invoice['total']}. Edit their maximum approved amount, "
        "or resolve the pending payment from your own account."
    ) + _details_table(
        [
            ("Invoice Date", invoice["date"]),
            ("Service Provider", f"{invoice['serviceProviderName']} ({invoice['serviceProviderEmail']})"),
            ("Services", invoice["serviceCount"]),
        ]
    )
    return get_base_template(
        title="Invoice Over Payment Approver Limit",
        preview_text="An invoice is over your approver's limit",
        content_sections=content,
    )


def payment_reminder_template(invoice: dict) -> str:
    content = _paragraph(
        f"Your invoice for {invoice['horse']} remains outstanding. "
        "Head to the Payments tab to resolve the invoice."
    ) + _details_table(
        [
            ("Invoice Date", invoice["date"]),
            ("Service Provider", f"{invoice['serviceProviderName']} ({invoice['serviceProviderEmail']})"),
            ("Services", invoice["serviceCount"]),
            ("Total", f"${invoice['total']:.2f}"),
        ]
    )
    return get_base_template(
        title="Payment Reminder for Outstanding Invoice",
        preview_text="You have an outstanding invoice",
        content_sections=content,
    )


def invoice_export_template(user_name: str, filters: dict) -> str:
    rows = [(key, value) for key, value in filters.items() if value not in (None, "", [])]
    content = _paragraph(f"Hi {user_name}, your invoice export is attached.")
    if rows:
        content += _paragraph("Filters used:") + _details_table(rows)
    return get_base_template(
        title="Your HorseLinc Invoice Export is Ready",
        preview_text="Your invoice export is attached",
        content_sections=content,
    )


def invoice_receipt_manager_template(data: dict) -> str:
    rows = [
        ("Paid", data["paidInFullAt"]),
        ("Horse", data["horseName"]),
        ("Trainer", data["trainerName"]),
        ("Service Provider", f"{data['serviceProviderName']} ({data['serviceProviderEmail']})"),
        ("Services", data["serviceCount"]),
        ("Subtotal", f"${data['subtotal']}"),
        ("Tip", f"${data['tip']}"),
        ("Total", f"${data['invoiceTotal']}"),
    ]
    content = _details_table(rows) + _services_table(data["services"])
    if data.get("multipleOwnerInfo"):
        content += _paragraph("Split between owners:") + _details_table(
            [
                (f"{owner['name']} ({owner['percentage']}%)", f"${owner['paidAmount']}")
                for owner in data["multipleOwnerInfo"]
            ]
        )
    return get_base_template(
        title="Invoice Paid In Full",
        preview_text=f"Receipt for {data['horseName']}",
        content_sections=content,
    )


def invoice_receipt_provider_template(data: dict) -> str:
    rows = [
        ("Paid", data["paidInFullAt"]),
        ("Horse", data["horseName"]),
        ("Trainer", data["trainerName"]),
        ("Services", data["serviceCount"]),
        ("Subtotal", f"${data['subtotal']}"),
        ("Tip", f"${data['tip']}"),
        ("Total", f"${data['invoiceTotal']}"),
    ]
    return get_base_template(
        title="Invoice Paid In Full",
        preview_text=f"Your invoice for {data['horseName']} has been paid",
        content_sections=_details_table(rows) + _services_table(data["services"]),
    )


def invoice_receipt_reassignee_template(data: dict) -> str:
    rows = [
        ("Paid", data["paidInFullAt"]),
        ("Horse", data["horseName"]),
        ("Trainer", data["trainerName"]),
        ("Service Provider", f"{data['serviceProviderName']} ({data['serviceProviderEmail']})"),
        ("Your Services", data["serviceCount"]),
        ("Your Total", f"${data['invoiceTotal']}"),
    ]
    return get_base_template(
        title="Invoice Paid In Full",
        preview_text=f"Your services for {data['horseName']} have been paid",
        content_sections=_details_table(rows) + _services_table(data["services"]),
    )


# ============================================================================
# PAYMENTS
# ============================================================================


def payout_failure_template(info: dict) -> str:
    intro = (
        f"We've encountered an error transferring the funds for {info['serviceProviderName']} "
        "services on a paid invoice. We are actively working to correct this error."
    )
    rows = [
        ("Invoice Date", info["invoiceDate"]),
        ("Invoice ID", info["invoiceId"]),
        ("Main Service Provider", f"{info['mainServiceProviderName']} ({info['mainServiceProviderEmail']})"),
        ("Trainer", info["horseTrainerName"]),
        ("Services", info["serviceCount"]),
        ("Total", f"${info['total']}"),
    ]
    if info.get("requestId"):
        rows.append(("Request ID", info["requestId"]))
    else:
        rows.append(("Payout", "Tip"))
    return get_base_template(
        title="Stripe Payout Failure",
        preview_text="A Stripe payout failed",
        content_sections=_paragraph(intro) + _details_table(rows),
    )


def charge_failure_template(payment: dict, error_message: str) -> str:
    rows = [
        ("Payment ID", payment.get("id")),
        ("Invoice ID", payment.get("invoiceId")),
        ("Paying User", payment.get("payingUser")),
        ("Submitted By", payment.get("submittedBy")),
        ("Attempted Amount", f"${payment.get('amount', 0):.2f}"),
        ("Stripe Message", error_message),
    ]
    return get_base_template(
        title="Stripe Charge Failure",
        preview_text="A Stripe charge failed",
        content_sections=_details_table(rows),
    )


def over_approver_limit_template(invoice: dict) -> str:
    content = _paragraph(
        f"{invoice['approverName']} ({invoice['approverEmail']}) is approved to pay up to "
        f"${invoice['approvalMaxAmount']} on your behalf, but a pending invoice is over that limit."
    ) + _details_table(
        [
            ("Invoice Total", f"${invoice['total']:.2f}"),
            ("Tip", f"${float(invoice['tip'] or 0):.2f}"),
            ("Total With Tip", f"${invoice['totalWithTip']:.2f}"),
        ]
    )
    return get_base_template(
        title="Pending Invoice Over Trainer's Approved Limit",
        preview_text="A pending invoice is over your approver's limit",
        content_sections=content,
    )
