"""
Printable QR code sheets for participating restaurants
Uses ReportLab to lay out one cut-out card per restaurant
"""


from io import BytesIO
from datetime import datetime
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import inch
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, Image
from reportlab.pdfgen import canvas
from xml.sax.saxutils import escape

from services.qr_service import generate_qr_png, qr_payload


# ===== COLOR SCHEME =====
COLORS = {
    'primary':    colors.HexColor('#1e3a8a'),   # Navy 800, header bar
    'accent':     colors.HexColor('#d97706'),   # Gold 600, rules and codes
    'text_dark':  colors.HexColor('#0f172a'),
    'text_light': colors.HexColor('#64748b'),
    'border':     colors.HexColor('#cbd5e1'),   # Dashed cut lines
    'white':      colors.HexColor('#ffffff'),
}

CARDS_PER_ROW = 2
CARD_WIDTH = 3.4 * inch
CARD_HEIGHT = 2.9 * inch
QR_SIZE = 1.8 * inch


def get_sheet_styles():
    """Paragraph styles for the card text"""
    styles = getSampleStyleSheet()

    styles.add(ParagraphStyle(
        name='CardName',
        parent=styles['Heading2'],
        fontName='Helvetica-Bold',
        fontSize=13,
        textColor=COLORS['text_dark'],
        alignment=TA_CENTER,
        spaceAfter=4,
        leading=16
    ))

    styles.add(ParagraphStyle(
        name='CardCode',
        parent=styles['Normal'],
        fontName='Courier-Bold',
        fontSize=16,
        textColor=COLORS['accent'],
        alignment=TA_CENTER,
        spaceBefore=4,
        leading=18
    ))

    styles.add(ParagraphStyle(
        name='SheetTitle',
        parent=styles['Heading1'],
        fontName='Helvetica-Bold',
        fontSize=18,
        textColor=COLORS['primary'],
        alignment=TA_CENTER,
        spaceAfter=14,
    ))

    return styles


class SheetCanvas(canvas.Canvas):
    """Canvas that stamps the header bar and "Page x of y" footer"""

    def __init__(self, *args, **kwargs):
        self.event_name = kwargs.pop('event_name', '')
        self.generated_on = kwargs.pop('generated_on', '')
        canvas.Canvas.__init__(self, *args, **kwargs)
        self._saved_page_states = []

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        num_pages = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self.draw_page_decorations(num_pages)
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)

    def draw_page_decorations(self, num_pages):
        page_width, page_height = letter

        self.setFillColor(COLORS['primary'])
        self.rect(0, page_height - 0.4*inch, page_width, 0.4*inch, stroke=0, fill=1)
        self.setFont('Helvetica-Bold', 8)
        self.setFillColor(COLORS['white'])
        self.drawString(0.75*inch, page_height - 0.27*inch, f"{self.event_name.upper()} BINGO")

        self.setStrokeColor(COLORS['accent'])
        self.setLineWidth(1)
        self.line(0.75*inch, 0.7*inch, page_width - 0.75*inch, 0.7*inch)

        self.setFont('Helvetica', 7.5)
        self.setFillColor(COLORS['text_light'])
        self.drawString(0.75*inch, 0.52*inch, f"Generated {self.generated_on}")
        page_text = f"Page {self._pageNumber} of {num_pages}"
        pw = self.stringWidth(page_text, 'Helvetica', 7.5)
        self.drawString((page_width - pw) / 2, 0.52*inch, page_text)


def _build_card(restaurant, styles, base_url):
    png = generate_qr_png(qr_payload(restaurant['code'], base_url))
    return [
        Paragraph(escape(restaurant['name']), styles['CardName']),
        Image(BytesIO(png), width=QR_SIZE, height=QR_SIZE),
        Paragraph(escape(restaurant['code']), styles['CardCode']),
    ]


def _build_card_grid(restaurants, styles, base_url):
    cells = [_build_card(r, styles, base_url) for r in restaurants]
    rows = [cells[i:i + CARDS_PER_ROW] for i in range(0, len(cells), CARDS_PER_ROW)]
    if rows and len(rows[-1]) < CARDS_PER_ROW:
        rows[-1] = rows[-1] + [''] * (CARDS_PER_ROW - len(rows[-1]))

    grid = Table(rows, colWidths=[CARD_WIDTH] * CARDS_PER_ROW, rowHeights=[CARD_HEIGHT] * len(rows))
    grid.setStyle(TableStyle([
        ('GRID', (0, 0), (-1, -1), 0.75, COLORS['border']),
        ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('TOPPADDING', (0, 0), (-1, -1), 10),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 10),
    ]))
    return grid


# ===== MAIN FUNCTION =====


def generate_qr_sheet(restaurants, event_name='Restaurant Week', base_url=None):
    """
    Build a printable PDF with one QR card per restaurant.

    Args:
        restaurants: iterable of dicts with at least 'name' and 'code'
        event_name: shown in the page header
        base_url: when set, QR codes encode a check-in URL instead of the bare code

    Returns a BytesIO positioned at the start of the PDF.
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        topMargin=0.75 * inch,
        bottomMargin=0.9 * inch,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        title=f'{event_name} QR Codes',
    )

    styles = get_sheet_styles()
    restaurants = sorted(restaurants, key=lambda r: r['name'].lower())
    story = [Paragraph(f'{escape(event_name)} Check-In Codes', styles['SheetTitle'])]
    if restaurants:
        story.append(_build_card_grid(restaurants, styles, base_url))
    else:
        story.append(Spacer(1, 0.5*inch))
        story.append(Paragraph('No participating restaurants yet.', styles['Normal']))

    generated_on = datetime.now().strftime("%B %d, %Y")
    doc.build(
        story,
        canvasmaker=lambda *args, **kwargs: SheetCanvas(
            *args,
            event_name=event_name,
            generated_on=generated_on,
            **kwargs
        )
    )

    buffer.seek(0)
    return buffer
