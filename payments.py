"""
Stripe Checkout bridge.

Talks to the Stripe REST API directly: one call creates a hosted
checkout session for an order, another retrieves it once the buyer is
redirected back so the payment can be reconciled into an invoice.
"""

import logging
from typing import Optional

import requests

import config
import database

logger = logging.getLogger(__name__)

STRIPE_API = "https://api.stripe.com/v1"


class PaymentError(Exception):
    pass


class StripeClient:
    def __init__(self, secret_key: str, currency: str = "usd", base_url: str = STRIPE_API,
                 http: Optional[requests.Session] = None):
        self.secret_key = secret_key
        self.currency = currency
        self.base_url = base_url
        self.http = http or requests.Session()

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        if not self.secret_key:
            raise PaymentError("STRIPE_SECRET_KEY is not configured")
        try:
            response = self.http.request(
                method,
                f"{self.base_url}{path}",
                data=data,
                headers={"Authorization": f"Bearer {self.secret_key}"},
                timeout=15,
            )
        except requests.RequestException as exc:
            logger.error("Stripe request %s %s failed: %s", method, path, exc)
            raise PaymentError(str(exc)) from exc
        if response.status_code >= 300:
            logger.error("Stripe %s %s returned %s: %s", method, path, response.status_code, response.text)
            raise PaymentError(f"Stripe returned {response.status_code}")
        return response.json()

    def create_checkout_session(self, *, order_id: str, book_id: str, book_name: str, price: float,
                                user_name: Optional[str], customer_email: str,
                                success_url: str, cancel_url: str) -> dict:
        data = {
            "mode": "payment",
            "customer_email": customer_email,
            "line_items[0][price_data][currency]": self.currency,
            "line_items[0][price_data][product_data][name]": book_name,
            "line_items[0][price_data][unit_amount]": int(round(price * 100)),
            "line_items[0][quantity]": 1,
            "metadata[orderId]": order_id,
            "metadata[bookId]": book_id,
            "metadata[userName]": user_name or "",
            "metadata[bookName]": book_name,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        session = self._request("POST", "/checkout/sessions", data)
        logger.info("Created checkout session %s for order %s", session.get("id"), order_id)
        return session

    def retrieve_session(self, session_id: str) -> dict:
        return self._request("GET", f"/checkout/sessions/{session_id}")


_client: Optional[StripeClient] = None


def get_payments() -> StripeClient:
    global _client
    if _client is None:
        _client = StripeClient(config.STRIPE_SECRET_KEY, config.STRIPE_CURRENCY)
    return _client


def success_url() -> str:
    return f"{config.CLIENT_DOMAIN}/payment-success?session_id={{CHECKOUT_SESSION_ID}}"


def cancel_url() -> str:
    return f"{config.CLIENT_DOMAIN}/dashboard/my-orders"


def build_invoice(session: dict) -> dict:
    """Map a completed checkout session onto an invoice document."""
    metadata = session.get("metadata") or {}
    customer = session.get("customer_details") or {}
    return {
        "transactionId": session.get("payment_intent") or session.get("id"),
        "bookId": metadata.get("bookId"),
        "orderId": metadata.get("orderId"),
        "buyerEmail": session.get("customer_email") or customer.get("email"),
        "buyerName": metadata.get("userName") or customer.get("name"),
        "bookName": metadata.get("bookName"),
        "price": (session.get("amount_total") or 0) / 100,
        "paidAt": database.now(),
    }
