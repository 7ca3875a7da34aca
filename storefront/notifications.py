from typing import Dict, List, Optional, Tuple

import resend
from flask import current_app, render_template

from .extensions import mongo
from .helpers import normalize_email, round_money, utcnow


def send_email_via_resend(payload: Dict[str, object]) -> Tuple[bool, Optional[str]]:
    configured_api_key = (current_app.config.get("RESEND_API_KEY") or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def build_order_email_items(order_lines: List[Dict], product_names: Dict) -> List[Dict]:
    items: List[Dict] = []
    for line in order_lines or []:
        price = round_money(line.get("price"))
        quantity = int(line.get("quantity") or 1)
        items.append(
            {
                "name": product_names.get(line.get("product")) or "Item",
                "quantity": quantity,
                "price": price,
                "line_total": round_money(price * quantity),
            }
        )
    return items


def send_order_confirmation_email(
    order_document: Dict[str, object], recipient_email: str, product_names: Dict
) -> Tuple[bool, Optional[str]]:
    """Send the order receipt, returning ``(sent, error_message)``."""
    normalized_email = normalize_email(recipient_email)
    if not normalized_email:
        return False, "Missing customer email for the order receipt."

    store_config = mongo.db.store_config.find_one({}) or {}
    store_name = store_config.get("store_name") or "Storefront"
    order_identifier = str(order_document.get("_id") or "").strip() or "Order"
    created_at = order_document.get("created_at") or utcnow()
    items = build_order_email_items(order_document.get("products"), product_names)

    html_body = render_template(
        "emails/order_confirmation.html",
        store_name=store_name,
        order_id=order_identifier,
        items=items,
        subtotal=round_money(order_document.get("subtotal")),
        promo_discount=round_money(order_document.get("promo_discount")),
        vat=round_money(order_document.get("vat")),
        total=round_money(order_document.get("total")),
        created_at=created_at,
    )
    item_lines = ", ".join(
        f"{item['name']} x{item['quantity']} ({item['price']:.2f})" for item in items
    )
    text_body = (
        f"Thank you for your purchase! Order {order_identifier} on "
        f"{created_at.strftime('%Y-%m-%d %H:%M')}.\n"
        f"Items: {item_lines}.\n"
        f"Total: {round_money(order_document.get('total')):.2f}.\n\n"
        f"{store_name} Team"
    )

    payload: Dict[str, object] = {
        "from": f"{store_name} <{current_app.config['ORDER_EMAIL_SENDER']}>",
        "to": [normalized_email],
        "subject": "Thank you for your purchase",
        "html": html_body,
        "text": text_body,
    }

    return send_email_via_resend(payload)
