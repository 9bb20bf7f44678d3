# methods.py
import logging
from datetime import datetime, timezone
from pathlib import Path

import cloudinary
import cloudinary.uploader
import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import (
    RESEND_API_KEY,
    SENDER_EMAIL,
    CLIENT_BASE_URL,
    CLOUDINARY_CLOUD_NAME,
    CLOUDINARY_API_KEY,
    CLOUDINARY_API_SECRET,
    CLOUDINARY_FOLDER,
)

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY

cloudinary.config(
    cloud_name=CLOUDINARY_CLOUD_NAME,
    api_key=CLOUDINARY_API_KEY,
    api_secret=CLOUDINARY_API_SECRET,
    secure=True,
)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates" / "emails"

email_templates = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)

# ------------------------------------------------------------
# Email
# ------------------------------------------------------------

def send_email(subject: str, html_message: str, receiver_email: str) -> bool:
    """
    Send one HTML email through Resend.
    Returns False (and logs) instead of raising, so callers never fail a request on email.
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set, skipping email '%s' to %s", subject, receiver_email)
        return False

    params = {
        "from": SENDER_EMAIL,
        "to": [receiver_email],
        "subject": subject,
        "html": html_message,
    }
    try:
        result = resend.Emails.send(params)
        logger.info("Email '%s' sent to %s (%s)", subject, receiver_email, (result or {}).get("id"))
        return True
    except Exception as e:
        logger.error("Failed to send email '%s' to %s: %r", subject, receiver_email, e)
        return False


def render_email(template_name: str, **context) -> str:
    context.setdefault("client_url", CLIENT_BASE_URL)
    context.setdefault("year", datetime.now().year)
    return email_templates.get_template(template_name).render(**context)


def send_welcome_email(email: str, name: str) -> bool:
    html = render_email("welcome.html", name=name)
    return send_email("Welcome to SeaBite!", html, email)


def send_login_alert_email(email: str, name: str) -> bool:
    html = render_email(
        "login_alert.html",
        name=name,
        login_time=datetime.now(timezone.utc).strftime("%d %b %Y, %I:%M %p"),
    )
    return send_email("Security Alert: New Login Detected", html, email)


def send_order_placed_email(email: str, name: str, order: dict) -> bool:
    html = render_email("order_placed.html", name=name, order=order)
    return send_email(f"Order Confirmed: #{order.get('order_id')}", html, email)


STATUS_EMAIL_COPY = {
    "Processing": ("Your Order is Being Prepared", "We are cleaning and packing your fresh catch right now."),
    "Shipped": ("On Its Way!", "Your SeaBite order has left our facility and is heading your way. Please ensure someone is available to receive the fresh package."),
    "Delivered": ("Package Arrived!", "Your order has been delivered. Refrigerate your items right away and enjoy the fresh taste of the ocean!"),
    "Cancelled": ("Order Cancelled", "Your order has been cancelled. If you paid online, any refund will be processed to your original payment method."),
}


def send_status_update_email(email: str, name: str, order_id: int, status: str) -> bool:
    title, body = STATUS_EMAIL_COPY.get(status, ("Order Update", f"Your order status is now {status}."))
    html = render_email(
        "status_update.html",
        name=name,
        order_id=order_id,
        status=status,
        title=title,
        body=body,
    )
    return send_email(f"Order #{order_id} Update: {status}", html, email)


def send_refund_email(email: str, name: str, order_id: int, amount: float) -> bool:
    html = render_email("refund_initiated.html", name=name, order_id=order_id, amount=amount)
    return send_email(f"Refund Initiated: Order #{order_id}", html, email)


def send_contact_reply_email(email: str, subject: str, reply_message: str, original_message: str) -> bool:
    html = render_email(
        "contact_reply.html",
        subject=subject,
        reply_message=reply_message,
        original_message=original_message,
    )
    return send_email(subject, html, email)

# ------------------------------------------------------------
# Product images (Cloudinary)
# ------------------------------------------------------------

def upload_product_image(content: bytes, filename: str = "") -> str:
    """
    Upload raw image bytes and return the https URL.
    Errors propagate to the caller.
    """
    result = cloudinary.uploader.upload(
        content,
        folder=CLOUDINARY_FOLDER,
        resource_type="image",
    )
    logger.info("Uploaded product image %s -> %s", filename or "<bytes>", result.get("public_id"))
    return result["secure_url"]
