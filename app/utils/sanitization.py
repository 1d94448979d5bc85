from typing import Any, Iterable, Optional

from ..config import STRIPE_SERVICE_FEE_PERCENTAGE


def sanitize_object(data: Optional[dict[str, Any]], whitelist: Iterable[str]) -> Optional[dict[str, Any]]:
    """
    Keep only whitelisted keys of a dict. Lists pass through untouched,
    matching how request bodies are filtered before they reach a model.
    """
    if not data or isinstance(data, list):
        return data
    allowed = set(whitelist)
    return {key: value for key, value in data.items() if key in allowed}


def unique_emails(emails: Iterable[str]) -> list[str]:
    """Unique, order-preserving recipient list"""
    return list(dict.fromkeys(email for email in emails if email))


def add_service_fee(amount: float) -> float:
    """Increase an amount by the app's service fee (fee rounded to cents)"""
    return amount + round(amount * STRIPE_SERVICE_FEE_PERCENTAGE, 2)


def calculate_invoice_total_with_fee(invoice) -> str:
    """Invoice amount plus tip plus service fee, formatted to two decimals"""
    amount_plus_tip = round(invoice.amount + (invoice.tip or 0), 2)
    service_fee = round(amount_plus_tip * STRIPE_SERVICE_FEE_PERCENTAGE, 2)
    return f"{amount_plus_tip + service_fee:.2f}"


def format_amount(value) -> str:
    """Plain number for messages: whole amounts drop the decimal part"""
    number = float(value or 0)
    if number.is_integer():
        return str(int(number))
    return str(number)


def build_email_string(emails: Iterable[str]) -> str:
    """Unique recipients joined for display"""
    return ", ".join(unique_emails(emails))
