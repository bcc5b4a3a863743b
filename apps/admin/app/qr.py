"""Printable QR material for restaurant tables."""
from __future__ import annotations

import base64
import html
from io import BytesIO

import qrcode
from reportlab.lib.pagesizes import A6
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas


def _qr_image(data: str, box_size: int = 8, border: int = 2):
    q = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=max(1, min(int(box_size), 20)),
        border=max(1, min(int(border), 8)),
    )
    q.add_data(data)
    q.make(fit=True)
    return q.make_image(fill_color="black", back_color="white")


def qr_png(data: str, box_size: int = 8, border: int = 2) -> bytes:
    if not data:
        raise ValueError("missing data")
    img = _qr_image(data, box_size=box_size, border=border)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def table_tent_pdf(code: str, url: str, venue: str = "siMenu") -> bytes:
    """
    One A6 card per table: venue name on top, the QR code in the middle and
    the table code with a short scan hint underneath.
    """
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A6)
    width, height = A6
    c.setTitle(f"Meja {code}")
    c.setFont("Helvetica-Bold", 16)
    c.drawCentredString(width / 2, height - 36, venue)

    img = _qr_image(url, box_size=10, border=1)
    pil = img.convert("RGB") if hasattr(img, "convert") else img
    qr_size = min(width - 48, height - 140)
    c.drawImage(
        ImageReader(pil),
        (width - qr_size) / 2,
        (height - qr_size) / 2,
        width=qr_size,
        height=qr_size,
        preserveAspectRatio=True,
        mask="auto",
    )

    c.setFont("Helvetica-Bold", 20)
    c.drawCentredString(width / 2, 52, f"Meja {code}")
    c.setFont("Helvetica", 9)
    c.drawCentredString(width / 2, 34, "Scan untuk melihat menu dan memesan")
    c.showPage()
    c.save()
    return buf.getvalue()


def print_page_html(code: str, url: str, generated: str = "") -> str:
    png = base64.b64encode(qr_png(url, box_size=10)).decode("ascii")
    code_e = html.escape(code)
    url_e = html.escape(url)
    generated_e = html.escape(generated)
    return f"""<!doctype html>
<html lang="id"><head><meta charset="utf-8"/>
<title>QR Meja {code_e}</title>
<style>
body{{font-family:sans-serif;display:flex;justify-content:center;margin:24px}}
.card{{border:1px solid #ddd;border-radius:12px;padding:24px;text-align:center;width:320px}}
.card img{{width:240px;height:240px}}
.code{{font-size:28px;font-weight:bold;margin-top:8px}}
.hint{{color:#666;font-size:13px}}
@media print{{button{{display:none}}.card{{border:none}}}}
</style></head>
<body><div class="card">
<div>siMenu</div>
<img alt="QR {code_e}" src="data:image/png;base64,{png}"/>
<div class="code">Meja {code_e}</div>
<div class="hint">Scan untuk melihat menu dan memesan</div>
<div class="hint">{url_e}</div>
<div class="hint">{generated_e}</div>
<button onclick="window.print()">Cetak</button>
</div></body></html>
"""
