import logging
import os
from typing import Optional

import resend

logger = logging.getLogger(__name__)

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Brownie Shop <orders@brownieshop.com>")
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173").rstrip("/")


class EmailError(Exception):
    pass


def send_email(to: str, subject: str, html: str) -> str:
    """Send one message through Resend and return its id.

    Raises EmailError when the service is not configured or rejects the
    message; callers decide whether that is fatal.
    """
    api_key = RESEND_API_KEY.strip()
    if not api_key:
        raise EmailError("Email service is not configured")

    resend.api_key = api_key
    try:
        response = resend.Emails.send({
            "from": EMAIL_FROM,
            "to": [to],
            "subject": subject,
            "html": html,
        })
    except Exception as exc:
        raise EmailError(str(exc)) from exc

    if not isinstance(response, dict) or not response.get("id"):
        raise EmailError(f"Unexpected response from email service: {response}")
    return response["id"]


def send_verification_email(email: str, token: str):
    url = f"{CLIENT_URL}/verify-email?token={token}"
    html = f"""
      <h1>Welcome to Brownie Shop!</h1>
      <p>Please verify your email address by clicking the link below:</p>
      <a href="{url}">Verify Email</a>
      <p>This link will expire in 24 hours.</p>
    """
    return send_email(email, "Verify your email address", html)


def send_password_reset_email(email: str, token: str):
    url = f"{CLIENT_URL}/reset-password?token={token}"
    html = f"""
      <h1>Password Reset Request</h1>
      <p>Click the link below to reset your password:</p>
      <a href="{url}">Reset Password</a>
      <p>This link will expire in 1 hour.</p>
      <p>If you didn't request this, please ignore this email.</p>
    """
    return send_email(email, "Reset your password", html)


def _item_lines(order: dict) -> str:
    return "".join(
        f"<li>{item['name']} ({item['variant_name']}) - {item['quantity']}x - &#8369;{item['price']}</li>"
        for item in order.get("items", [])
    )


def send_order_confirmation_email(email: str, order: dict):
    html = f"""
      <h1>Thank you for your order!</h1>
      <p>Your order has been successfully placed.</p>
      <h2>Order Details:</h2>
      <ul>{_item_lines(order)}</ul>
      <p><strong>Total Amount:</strong> &#8369;{order['total_amount']:.2f}</p>
      <p><strong>Payment Method:</strong> {order['payment_method']}</p>
      <p>You can track your order status here:</p>
      <a href="{CLIENT_URL}/track-order/{order['_id']}">Track Order</a>
    """
    return send_email(email, "Order Confirmation - Brownie Shop", html)


def send_out_for_delivery_email(email: str, order: dict):
    details = order.get("delivery_details") or {}
    eta: Optional[str] = details.get("estimated_delivery_time")
    html = f"""
      <h1>Your brownies are on the way!</h1>
      <p>Rider: {details.get('rider_name', '')} ({details.get('rider_phone', '')})</p>
      {f'<p>Estimated arrival: {eta}</p>' if eta else ''}
      <a href="{CLIENT_URL}/track-order/{order['_id']}">Track Order</a>
    """
    return send_email(email, "Your order is out for delivery", html)


def send_delivered_email(email: str, order: dict):
    html = f"""
      <h1>Your order has been delivered</h1>
      <p>We hope you enjoy your brownies. Tell us what you think:</p>
      <a href="{CLIENT_URL}/feedback/{order['_id']}">Leave Feedback</a>
    """
    return send_email(email, "Order delivered - Brownie Shop", html)


def send_refund_email(email: str, order: dict):
    html = f"""
      <h1>Your order has been refunded</h1>
      <p>A refund of &#8369;{order['total_amount']:.2f} has been issued to your
      {order['payment_method']} account.</p>
    """
    return send_email(email, "Refund processed - Brownie Shop", html)
