"""Render a proof-of-existence certificate as a one-page A4 PDF.

The certificate restates what the ledger holds for one Proof record: the
content hash, when it was stamped, who stamped it and the record address
anyone can re-derive to check it.
"""

from __future__ import annotations

import pathlib
from datetime import datetime, timezone
from typing import Union

from voidledger.addressing import Address
from voidledger.records import Proof

ACCENT = (100 / 255, 200 / 255, 1.0)
BACKGROUND = (5 / 255, 5 / 255, 5 / 255)
MUTED = (80 / 255, 80 / 255, 80 / 255)
SUBTLE = (160 / 255, 160 / 255, 160 / 255)
RULE = (26 / 255, 26 / 255, 26 / 255)
WHITE = (1.0, 1.0, 1.0)


def certificate_filename(proof: Proof) -> str:
    return f"void-proof-{proof.hash.hex()[:8]}.pdf"


def format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%B %d, %Y %H:%M:%S UTC")


def render_certificate(
    proof: Proof,
    address: Address,
    program_id: Address,
    out_pdf: Union[str, pathlib.Path],
) -> pathlib.Path:
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.units import mm
    from reportlab.pdfgen import canvas

    out_pdf = pathlib.Path(out_pdf)
    out_pdf.parent.mkdir(parents=True, exist_ok=True)

    c = canvas.Canvas(str(out_pdf), pagesize=A4)
    c.setTitle(f"Proof of existence {proof.hash.hex()}")
    width, height = A4
    margin = 25 * mm

    c.setFillColorRGB(*BACKGROUND)
    c.rect(0, 0, width, height, stroke=0, fill=1)
    c.setStrokeColorRGB(*ACCENT)
    c.setLineWidth(0.5 * mm)
    c.rect(15 * mm, 15 * mm, width - 30 * mm, height - 30 * mm, stroke=1, fill=0)

    y = height - 30 * mm
    c.setFillColorRGB(*WHITE)
    c.setFont("Helvetica-Bold", 24)
    c.drawCentredString(width / 2, y, "VOID PROTOCOL")
    y -= 10 * mm
    c.setFillColorRGB(*MUTED)
    c.setFont("Helvetica", 14)
    c.drawCentredString(width / 2, y, "PROOF OF EXISTENCE")

    y -= 12 * mm
    c.setStrokeColorRGB(*RULE)
    c.setLineWidth(0.3 * mm)
    c.line(margin, y, width - margin, y)

    y -= 15 * mm
    c.setFillColorRGB(*SUBTLE)
    c.setFont("Helvetica", 10)
    c.drawCentredString(width / 2, y, "This certifies that a file with the following cryptographic")
    y -= 5 * mm
    c.drawCentredString(width / 2, y, "hash existed at the stated time.")

    digest = proof.hash.hex()
    sections = [
        ("SHA-256 HASH", [digest[:32], digest[32:]], 8),
        ("TIMESTAMP", [format_timestamp(proof.timestamp)], 10),
        ("REGISTERED BY", [str(proof.owner)], 8),
        ("RECORD ADDRESS", [str(address)], 8),
        ("PROGRAM", [str(program_id)], 8),
    ]
    y -= 5 * mm
    for label, lines, size in sections:
        y -= 15 * mm
        c.setFillColorRGB(*ACCENT)
        c.setFont("Courier", 9)
        c.drawString(margin, y, label)
        y -= 2 * mm
        c.setFillColorRGB(*WHITE)
        c.setFont("Courier", size)
        for line in lines:
            y -= 5 * mm
            c.drawString(margin, y, line)

    y -= 20 * mm
    c.setStrokeColorRGB(*RULE)
    c.line(margin, y, width - margin, y)
    y -= 12 * mm
    c.setFillColorRGB(*MUTED)
    c.setFont("Helvetica", 9)
    c.drawCentredString(width / 2, y, "Verify with: voidledger proof verify --hash <SHA-256>")

    c.showPage()
    c.save()
    return out_pdf
