import logging
import os

import requests

from emails import CLIENT_URL

logger = logging.getLogger(__name__)

PAYMONGO_API_URL = os.getenv("PAYMONGO_API_URL", "https://api.paymongo.com/v1")
PAYMONGO_SECRET_KEY = os.getenv("PAYMONGO_SECRET_KEY", "")


class PaymentError(Exception):
    pass


def create_payment_source(amount: float, payment_method: str) -> dict:
    """Create a PayMongo e-wallet source and return its id and checkout URL."""
    if not PAYMONGO_SECRET_KEY:
        raise PaymentError("Payment provider is not configured")

    payload = {
        "data": {
            "attributes": {
                "amount": int(round(amount * 100)),  # centavos
                "currency": "PHP",
                "type": payment_method,
                "redirect": {
                    "success": f"{CLIENT_URL}/payment/success",
                    "failed": f"{CLIENT_URL}/payment/failed",
                },
            }
        }
    }
    try:
        response = requests.post(
            f"{PAYMONGO_API_URL}/sources",
            json=payload,
            auth=(PAYMONGO_SECRET_KEY, ""),
            timeout=15,
        )
    except requests.RequestException as exc:
        raise PaymentError(f"Payment provider unreachable: {exc}") from exc

    if not response.ok:
        try:
            detail = response.json()["errors"][0]["detail"]
        except (ValueError, KeyError, IndexError, TypeError):
            detail = "Failed to create payment source"
        logger.error("PayMongo source creation failed (%s): %s", response.status_code, detail)
        raise PaymentError(detail)

    data = response.json()["data"]
    return {
        "source_id": data["id"],
        "redirect_url": data["attributes"]["redirect"]["checkout_url"],
    }
