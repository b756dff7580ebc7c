"""
salesflow.mergetags.registry

Catalogue of merge-tag variables, grouped by category.

Responsibilities:
- Describe each category (label, icon, description) and its variables
  (label, example, description) for template editors.
- Decide which categories a trigger type exposes.
- Map trigger aliases onto one canonical trigger group.
"""

from __future__ import annotations

from typing import Any

Category = dict[str, Any]


def _var(label: str, example: str, description: str) -> dict[str, str]:
    return {"label": label, "example": example, "description": description}


CATEGORIES: dict[str, Category] = {
    "system": {
        "label": "System",
        "icon": "cog",
        "description": "Date, time and system info",
        "variables": {
            "current_date": _var("Current Date", "26 Jan 2026", "Today's date"),
            "current_time": _var("Current Time", "10:30 AM", "Current time"),
            "current_datetime": _var("Current Date & Time", "26 Jan 2026, 10:30 AM", "Current date and time"),
            "current_year": _var("Current Year", "2026", "Current year"),
            "current_month": _var("Current Month", "January", "Current month name"),
            "current_day": _var("Current Day", "Monday", "Current day of week"),
            "company_name": _var("Company Name", "Your Company", "Your company/business name"),
            "company_email": _var("Company Email", "support@example.com", "Company contact email"),
            "company_phone": _var("Company Phone", "+60123456789", "Company contact phone"),
        },
    },
    "contact": {
        "label": "Contact",
        "icon": "user",
        "description": "Customer/Contact information",
        "variables": {
            "contact.name": _var("Full Name", "John Doe", "Customer's full name"),
            "contact.first_name": _var("First Name", "John", "Customer's first name"),
            "contact.last_name": _var("Last Name", "Doe", "Customer's last name"),
            "contact.email": _var("Email", "john@example.com", "Customer's email address"),
            "contact.phone": _var("Phone", "+60123456789", "Customer's phone number"),
        },
    },
    "order": {
        "label": "Order",
        "icon": "shopping-cart",
        "description": "Order details and items",
        "variables": {
            "order.number": _var("Order Number", "PO-20260126-ABC123", "Unique order reference number"),
            "order.total": _var("Total Amount", "RM 299.00", "Order total with currency"),
            "order.total_raw": _var("Total (Number Only)", "299.00", "Order total without currency"),
            "order.subtotal": _var("Subtotal", "RM 279.00", "Subtotal before discounts"),
            "order.subtotal_raw": _var("Subtotal (Number Only)", "279.00", "Subtotal without currency"),
            "order.currency": _var("Currency", "MYR", "Currency code"),
            "order.status": _var("Status", "confirmed", "Order status"),
            "order.items_count": _var("Items Count", "3", "Number of items in order"),
            "order.items_list": _var(
                "Items List", "- Product A (x1)\n- Product B (x2)", "Formatted list of ordered items"
            ),
            "order.first_item_name": _var("First Item Name", "Premium Course", "Name of the first ordered item"),
            "order.discount_amount": _var("Discount Amount", "RM 20.00", "Total discount applied"),
            "order.coupon_code": _var("Coupon Code", "SAVE20", "Applied coupon code"),
            "order.date": _var("Order Date", "26 Jan 2026", "Date order was placed"),
            "order.shipping_address": _var("Shipping Address", "123 Main St, City", "Formatted shipping address"),
            "order.billing_address": _var("Billing Address", "123 Main St, City", "Formatted billing address"),
        },
    },
    "payment": {
        "label": "Payment",
        "icon": "credit-card",
        "description": "Payment transaction details",
        "variables": {
            "payment.method": _var("Payment Method", "FPX", "Payment method used"),
            "payment.reference": _var("Payment Reference", "BC-123456", "Payment gateway reference"),
            "payment.status": _var("Payment Status", "completed", "Current payment status"),
            "payment.paid_at": _var("Payment Date", "26 Jan 2026, 10:30 AM", "Date and time of payment"),
            "payment.bank": _var("Bank Name", "Maybank", "Bank used for payment (FPX)"),
        },
    },
    "cart": {
        "label": "Cart",
        "icon": "shopping-bag",
        "description": "Shopping cart details",
        "variables": {
            "cart.total": _var("Cart Total", "RM 199.00", "Current cart total"),
            "cart.total_raw": _var("Cart Total (Number Only)", "199.00", "Cart total without currency"),
            "cart.items_count": _var("Cart Items Count", "2", "Number of items in cart"),
            "cart.items_list": _var("Cart Items List", "- Product A\n- Product B", "List of items in cart"),
            "cart.first_item_name": _var("First Cart Item", "Premium Course", "Name of first item in cart"),
            "cart.checkout_url": _var(
                "Checkout URL", "https://example.com/checkout/abc123", "URL to resume checkout"
            ),
            "cart.recovery_url": _var(
                "Recovery URL", "https://example.com/cart/recover/abc123", "URL to recover the cart"
            ),
            "cart.abandoned_at": _var("Abandoned Time", "2 hours ago", "When cart was abandoned"),
        },
    },
    "funnel": {
        "label": "Funnel",
        "icon": "filter",
        "description": "Funnel and step information",
        "variables": {
            "funnel.name": _var("Funnel Name", "Product Launch Funnel", "Name of the funnel"),
            "funnel.url": _var("Funnel URL", "https://example.com/f/launch", "Public URL of the funnel"),
            "funnel.step_name": _var("Step Name", "Checkout", "Current funnel step name"),
            "funnel.step_url": _var(
                "Step URL", "https://example.com/f/launch/checkout", "URL of the current step"
            ),
        },
    },
    "session": {
        "label": "Session",
        "icon": "globe",
        "description": "Session and tracking data",
        "variables": {
            "session.utm_source": _var("UTM Source", "facebook", "Traffic source (utm_source)"),
            "session.utm_medium": _var("UTM Medium", "cpc", "Traffic medium (utm_medium)"),
            "session.utm_campaign": _var("UTM Campaign", "summer_sale", "Campaign name (utm_campaign)"),
            "session.utm_content": _var("UTM Content", "banner_ad", "Ad content (utm_content)"),
            "session.utm_term": _var("UTM Term", "buy+course", "Search term (utm_term)"),
            "session.device": _var("Device Type", "mobile", "Device type (mobile/desktop/tablet)"),
            "session.browser": _var("Browser", "Chrome", "Browser name"),
            "session.country": _var("Country", "MY", "Country code"),
            "session.referrer": _var("Referrer", "google.com", "Referring website"),
        },
    },
}

# Canonical trigger -> aliases accepted for it.
TRIGGER_GROUPS: dict[str, tuple[str, ...]] = {
    "purchase_completed": ("purchase_completed", "funnel_purchase_completed", "order_paid"),
    "purchase_failed": ("purchase_failed", "funnel_purchase_failed", "order_failed"),
    "cart_abandoned": ("cart_abandoned", "funnel_cart_abandoned", "cart_abandonment"),
    "optin_submitted": ("optin_submitted", "form_submitted", "page_view"),
}

_GROUP_CATEGORIES: dict[str, tuple[str, ...]] = {
    "purchase_completed": ("order", "payment", "funnel", "session"),
    "purchase_failed": ("order", "funnel", "session"),
    "cart_abandoned": ("cart", "funnel", "session"),
    "optin_submitted": ("funnel", "session"),
}

_BASE_CATEGORIES = ("system", "contact")


def trigger_group(trigger_type: str) -> str | None:
    for group, aliases in TRIGGER_GROUPS.items():
        if trigger_type in aliases:
            return group
    return None


def triggers_match(configured: str, event: str) -> bool:
    """
    True when an automation configured for `configured` should fire on `event`.
    """

    if configured == event:
        return True
    group = trigger_group(event)
    return group is not None and group == trigger_group(configured)


class VariableRegistry:
    @staticmethod
    def variables_for_trigger(trigger_type: str) -> dict[str, Category]:
        group = trigger_group(trigger_type)
        names = _BASE_CATEGORIES + (_GROUP_CATEGORIES.get(group, ()) if group else ())
        return {name: CATEGORIES[name] for name in names}

    @staticmethod
    def all_variables() -> dict[str, Category]:
        return dict(CATEGORIES)

    @staticmethod
    def example_value(variable: str) -> str | None:
        for category in CATEGORIES.values():
            entry = category["variables"].get(variable)
            if entry is not None:
                return entry["example"]
        return None


# --- Module Notes -----------------------------------------------------------
# System variables are registered without a category prefix (`{{current_date}}`).
