"""HTML outcome pages for payers returning from checkout."""

import html
from typing import Dict, Any, Optional

from .service import RedirectOutcome, RedirectState

PAGE_COPY = {
    RedirectState.SUCCESS: ("Payment successful", "#16a34a", "Thank you! Your payment has been received."),
    RedirectState.PENDING: ("Payment pending", "#d97706", "Your payment is being processed. We will email you once it is confirmed."),
    RedirectState.FAILED: ("Payment failed", "#dc2626", "Your payment could not be completed. You have not been charged."),
    RedirectState.CANCELLED: ("Payment cancelled", "#6b7280", "The payment was cancelled. You can close this window and try again."),
    RedirectState.ERROR: ("Something went wrong", "#dc2626", "We could not confirm your payment right now."),
}


def _details_rows(order: Optional[Dict[str, Any]]) -> str:
    if not order:
        return ""
    rows = [
        ("Order ID", order.get("order_id")),
        ("Product", order.get("product_name")),
        ("Amount", f"{order.get('currency', '')} {order.get('gross_amount', '')}".strip()),
    ]
    cells = "".join(
        f"<tr><th>{html.escape(label)}</th><td>{html.escape(str(value))}</td></tr>"
        for label, value in rows
        if value
    )
    return f'<table class="details">{cells}</table>'


def render_outcome_page(outcome: RedirectOutcome) -> str:
    """Render the page for a redirect outcome. All dynamic values are escaped."""
    title, color, default_message = PAGE_COPY[outcome.state]
    message = html.escape(outcome.message or default_message)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{title}</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
           background: #f9fafb; display: flex; justify-content: center; padding: 48px 16px; }}
    .card {{ background: #fff; border-radius: 12px; padding: 32px; max-width: 480px;
             box-shadow: 0 1px 3px rgba(0,0,0,.1); }}
    h1 {{ color: {color}; font-size: 1.5rem; }}
    .details th {{ text-align: left; padding-right: 16px; color: #6b7280; }}
  </style>
</head>
<body>
  <div class="card" data-state="{outcome.state.value}">
    <h1>{title}</h1>
    <p>{message}</p>
    {_details_rows(outcome.order)}
  </div>
</body>
</html>"""
