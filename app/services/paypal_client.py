"""
PayPal Subscriptions REST client.

Plans are created in the PayPal dashboard; each paid tier maps to one PayPal
plan ID through PAYPAL_PLAN_<TIER> env vars.
"""
import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID", "").strip()
PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET", "").strip()
PAYPAL_API_URL = os.getenv("PAYPAL_API_URL", "https://api-m.sandbox.paypal.com").rstrip("/")
PAYPAL_PLAN_IDS = {
    "starter": os.getenv("PAYPAL_PLAN_STARTER", ""),
    "pro": os.getenv("PAYPAL_PLAN_PRO", ""),
    "premium": os.getenv("PAYPAL_PLAN_PREMIUM", ""),
}
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
BRAND_NAME = os.getenv("APP_NAME", "OratoriaAI")


class PayPalError(Exception):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def paypal_configured() -> bool:
    return bool(PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET and PAYPAL_API_URL)


def get_plan_id(tier: str) -> Optional[str]:
    return PAYPAL_PLAN_IDS.get(tier) or None


def tier_for_plan_id(plan_id: str) -> Optional[str]:
    for tier, configured in PAYPAL_PLAN_IDS.items():
        if configured and configured == plan_id:
            return tier
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    return body.get("message") or body.get("error_description") or body.get("error") or response.text


def get_access_token(client: httpx.Client) -> str:
    if not paypal_configured():
        raise PayPalError("PayPal credentials not configured", status_code=503)

    response = client.post(
        f"{PAYPAL_API_URL}/v1/oauth2/token",
        auth=(PAYPAL_CLIENT_ID, PAYPAL_CLIENT_SECRET),
        data={"grant_type": "client_credentials"},
        headers={"Accept": "application/json"},
    )
    if response.status_code != 200:
        logger.error("[PayPal] Auth failed (%s): %s", response.status_code, _error_message(response))
        raise PayPalError("PayPal auth failed")
    return response.json()["access_token"]


def create_subscription(tier: str, user_id: int, client: httpx.Client = None) -> dict:
    """
    Create a subscription for the tier's plan.
    Returns {"subscription_id", "approval_url"}; the user finishes on PayPal.
    """
    plan_id = get_plan_id(tier)
    if not plan_id:
        raise PayPalError(f"No PayPal plan configured for tier: {tier}", status_code=400)

    owns_client = client is None
    client = client or httpx.Client(timeout=30.0)
    try:
        token = get_access_token(client)
        response = client.post(
            f"{PAYPAL_API_URL}/v1/billing/subscriptions",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            },
            json={
                "plan_id": plan_id,
                "custom_id": str(user_id),  # Identifies the user when verifying
                "application_context": {
                    "brand_name": BRAND_NAME,
                    "shipping_preference": "NO_SHIPPING",
                    "user_action": "SUBSCRIBE_NOW",
                    "return_url": f"{FRONTEND_URL}/dashboard?subscription=success",
                    "cancel_url": f"{FRONTEND_URL}/pricing?subscription=cancelled",
                },
            },
        )
        if response.status_code not in (200, 201):
            message = _error_message(response)
            logger.error("[PayPal] Create subscription failed (%s): %s", response.status_code, message)
            raise PayPalError(message or "Failed to create subscription", status_code=response.status_code)

        subscription = response.json()
        approval_url = next(
            (link.get("href") for link in subscription.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        if not approval_url:
            raise PayPalError("No approval link found", status_code=500)
        return {"subscription_id": subscription.get("id"), "approval_url": approval_url}
    except httpx.HTTPError as e:
        logger.error("[PayPal] Request error: %s", e)
        raise PayPalError("Could not reach PayPal") from e
    finally:
        if owns_client:
            client.close()


def get_subscription(subscription_id: str, client: httpx.Client = None) -> dict:
    owns_client = client is None
    client = client or httpx.Client(timeout=30.0)
    try:
        token = get_access_token(client)
        response = client.get(
            f"{PAYPAL_API_URL}/v1/billing/subscriptions/{subscription_id}",
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
        )
        if response.status_code != 200:
            logger.error("[PayPal] Get subscription %s failed (%s): %s",
                         subscription_id, response.status_code, _error_message(response))
            raise PayPalError("Failed to verify subscription", status_code=response.status_code)
        return response.json()
    except httpx.HTTPError as e:
        logger.error("[PayPal] Request error: %s", e)
        raise PayPalError("Could not reach PayPal") from e
    finally:
        if owns_client:
            client.close()
