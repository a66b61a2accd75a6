from __future__ import annotations

import os
from typing import Any, Dict

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas


def generate_order_pdf(order: Dict[str, Any], export_dir: str) -> str:
    """Order confirmation PDF; ``order`` is the dict returned by ``get_order``."""
    os.makedirs(export_dir, exist_ok=True)

    filename = f"order_{order['orderNumber']}.pdf"
    path = os.path.join(export_dir, filename)

    c = canvas.Canvas(path, pagesize=A4)
    w, h = A4

    y = h - 50
    c.setFont("Helvetica-Bold", 14)
    c.drawString(40, y, f"ORDER CONFIRMATION {order['orderNumber']}")
    y -= 20

    c.setFont("Helvetica", 11)
    c.drawString(40, y, f"Customer: {order['customerName']} <{order['customerEmail']}>")
    y -= 16
    c.drawString(40, y, f"Ship to: {order['address']}, {order['city']} {order['postalCode']}, {order['country']}")
    y -= 16
    c.drawString(40, y, f"Date: {order['createdAt'][:19].replace('T', ' ')}")
    y -= 16
    c.drawString(40, y, f"Status: {order['status']}   Payment: {order['paymentMethod'] or '-'}")
    y -= 24

    # header
    c.setFont("Helvetica-Bold", 10)
    c.drawString(40, y, "Item")
    c.drawString(310, y, "Qty")
    c.drawString(360, y, "Price")
    c.drawString(440, y, "Total")
    y -= 10
    c.line(40, y, 550, y)
    y -= 16

    c.setFont("Helvetica", 10)
    for it in order["items"]:
        c.drawString(40, y, str(it["name"])[:45])
        c.drawRightString(340, y, str(it["quantity"]))
        c.drawRightString(420, y, f"{float(it['price']):.2f}")
        c.drawRightString(550, y, f"{float(it['lineTotal']):.2f}")
        y -= 14
        if y < 80:
            c.showPage()
            y = h - 50
            c.setFont("Helvetica", 10)

    y -= 10
    c.line(40, y, 550, y)
    y -= 18
    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(550, y, f"TOTAL: {float(order['totalAmount']):.2f} {order['currency']}")

    c.save()
    return path
