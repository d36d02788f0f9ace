"""Subjects and HTML bodies for transactional emails."""
from html import escape
from typing import Optional


def format_amount(amount: Optional[int], currency: Optional[str]) -> str:
    """Render minor units as e.g. ``150.00 EUR``."""
    if amount is None:
        return "-"
    return f"{amount / 100:.2f} {(currency or '').upper()}".strip()


def order_confirmation(plan_id: str, amount: Optional[int], currency: Optional[str]) -> tuple[str, str]:
    subject = "Your order is confirmed"
    html = (
        "<h1>Thank you for your order!</h1>"
        f"<p>Plan: <strong>{escape(plan_id)}</strong></p>"
        f"<p>Total: <strong>{escape(format_amount(amount, currency))}</strong></p>"
        "<p>Your coach will be in touch shortly.</p>"
    )
    return subject, html


def account_activation(activation_url: str, expires_hours: int) -> tuple[str, str]:
    subject = "Activate your account"
    html = (
        "<h1>Welcome!</h1>"
        "<p>Set your password to activate your account:</p>"
        f'<p><a href="{escape(activation_url, quote=True)}">Activate account</a></p>'
        f"<p>This link is valid for {expires_hours} hours and can be used once.</p>"
    )
    return subject, html


def admin_new_order(
    customer_email: str,
    plan_id: str,
    amount: Optional[int],
    currency: Optional[str],
    order_id: str,
) -> tuple[str, str]:
    subject = f"New order: {plan_id}"
    html = (
        "<h2>New order received</h2>"
        "<ul>"
        f"<li>Customer: {escape(customer_email)}</li>"
        f"<li>Plan: {escape(plan_id)}</li>"
        f"<li>Amount: {escape(format_amount(amount, currency))}</li>"
        f"<li>Order: {escape(order_id)}</li>"
        "</ul>"
    )
    return subject, html
