"""
Stripe REST client
Customers and charges on the platform account, transfers and login links for
Connect accounts, and the Connect OAuth code exchange
"""

import logging
from typing import Any, Optional

import httpx

from ..config import STRIPE_API_URL, STRIPE_CONNECT_URL, STRIPE_SECRET_KEY

logger = logging.getLogger(__name__)

CURRENCY = "usd"


class StripeError(Exception):
    """Raised when Stripe rejects a call; message is Stripe's user-facing text"""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


def _headers(idempotency_key: Optional[str] = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {STRIPE_SECRET_KEY}"}
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    return headers


def _raise_for_error(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    try:
        error = response.json().get("error", {})
    except ValueError:
        error = {}
    message = error.get("message") or f"Stripe API error (HTTP {response.status_code})"
    logger.error(f"❌ Stripe error {response.status_code}: {message}")
    raise StripeError(message, code=error.get("code"), status_code=response.status_code)


async def _post(path: str, data: dict[str, Any], idempotency_key: Optional[str] = None) -> dict:
    if not STRIPE_SECRET_KEY:
        raise StripeError("Stripe is not configured")

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.post(
            f"{STRIPE_API_URL}{path}", data=data, headers=_headers(idempotency_key)
        )
    _raise_for_error(response)
    return response.json()


# ============================================================================
# CUSTOMERS (paying horse managers)
# ============================================================================


async def create_customer(email: str, source: str) -> dict:
    logger.info(f"💳 Creating Stripe customer for {email}")
    return await _post("/customers", {"email": email, "source": source, "expand[]": "sources"})


async def update_customer(customer_id: str, email: str, source: str) -> dict:
    logger.info(f"💳 Updating Stripe customer {customer_id}")
    return await _post(
        f"/customers/{customer_id}", {"email": email, "source": source, "expand[]": "sources"}
    )


def default_card(customer: dict) -> Optional[dict]:
    """First card on a customer object, if any"""
    sources = (customer or {}).get("sources") or {}
    data = sources.get("data") or []
    return data[0] if data else None


# ============================================================================
# CHARGES AND TRANSFERS
# ============================================================================


async def create_charge(
    amount: int, customer: str, receipt_email: Optional[str], idempotency_key: Optional[str] = None
) -> dict:
    """Single line charge in cents against a saved customer"""
    data = {"amount": amount, "currency": CURRENCY, "customer": customer}
    if receipt_email:
        data["receipt_email"] = receipt_email
    logger.info(f"💳 Charging customer {customer} {amount} cents")
    return await _post("/charges", data, idempotency_key=idempotency_key)


async def create_transfer(amount: int, destination: Optional[str], source_transaction: str) -> dict:
    """Payout in cents to a connected account, funded by an existing charge"""
    if not destination:
        raise StripeError("Destination account is not connected to Stripe")
    data = {
        "amount": amount,
        "currency": CURRENCY,
        "destination": destination,
        "source_transaction": source_transaction,
    }
    logger.info(f"💸 Transferring {amount} cents to {destination}")
    return await _post("/transfers", data)


# ============================================================================
# CONNECT
# ============================================================================


async def create_login_link(account_id: str) -> dict:
    return await _post(f"/accounts/{account_id}/login_links", {})


async def exchange_oauth_code(code: str) -> dict:
    """
    Finish the Connect onboarding redirect.
    Returns Stripe's token body as-is; an OAuth failure comes back as {"error": ...}.
    """
    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.post(
            f"{STRIPE_CONNECT_URL}/oauth/token",
            data={
                "client_secret": STRIPE_SECRET_KEY or "",
                "code": code,
                "grant_type": "authorization_code",
            },
        )
    try:
        return response.json()
    except ValueError:
        return {"error": f"HTTP {response.status_code}"}
