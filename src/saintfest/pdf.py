"""
Printable bracket as a one-page PDF.
"""
import os
from io import BytesIO
from typing import Dict, List
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter, landscape
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from saintfest.bracket import bracket_summary


def pdf_filename(bracket: Dict) -> str:
    """Download name, e.g. Saintfest_2025_Bracket.pdf"""
    title = '_'.join((bracket.get('title') or 'Saintfest').split())
    return f'{title}_Bracket.pdf'


def pdf_relative_path(bracket: Dict) -> str:
    return os.path.join('pdfs', str(bracket.get('year')), f'{bracket["id"]}.pdf')


def _saint_line(name: str, votes: int, is_winner: bool) -> str:
    text = escape(name) if name else 'TBD'
    if name and votes:
        text += f' ({votes})'
    return f'<b>{text}</b>' if is_winner else text


def _match_cell(match: Dict, style) -> Paragraph:
    winner = match.get('winner_id')
    first = _saint_line(match.get('saint1_name'), match.get('votes_for_saint1', 0),
                        bool(winner) and winner == match.get('saint1_id'))
    second = _saint_line(match.get('saint2_name'), match.get('votes_for_saint2', 0),
                         bool(winner) and winner == match.get('saint2_id'))
    return Paragraph(f'{first}<br/>{second}', style)


def render_bracket_pdf(bracket: Dict) -> bytes:
    """Render every round of the bracket as a column of match boxes."""
    buffer = BytesIO()
    margin = 0.5 * inch
    page_size = landscape(letter)
    doc = SimpleDocTemplate(buffer, pagesize=page_size, rightMargin=margin, leftMargin=margin,
                            topMargin=margin, bottomMargin=margin,
                            title=bracket.get('title') or 'Saintfest Bracket')

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'BracketTitle',
        parent=styles['Heading1'],
        fontSize=18,
        alignment=TA_CENTER,
        fontName='Helvetica-Bold',
        spaceAfter=6,
    )
    header_style = ParagraphStyle('RoundHeader', parent=styles['Normal'], fontSize=9,
                                  alignment=TA_CENTER, fontName='Helvetica-Bold')
    cell_style = ParagraphStyle('MatchCell', parent=styles['Normal'], fontSize=7, leading=8)

    elements = [Paragraph(escape(bracket.get('title') or 'Saintfest'), title_style)]

    rounds = bracket.get('rounds', [])
    if rounds:
        columns = [[_match_cell(m, cell_style) for m in r['matches']] for r in rounds]
        row_count = max(len(c) for c in columns)
        data: List[List] = [[Paragraph(escape(r['round_name']), header_style) for r in rounds]]
        for row in range(row_count):
            data.append([c[row] if row < len(c) else '' for c in columns])

        available_width = page_size[0] - 2 * margin
        table = Table(data, colWidths=[available_width / len(rounds)] * len(rounds), repeatRows=1)
        style_commands = [
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('LINEBELOW', (0, 0), (-1, 0), 1, colors.black),
            ('TOPPADDING', (0, 0), (-1, -1), 2),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 2),
        ]
        for col, column in enumerate(columns):
            style_commands.append(('BOX', (col, 1), (col, len(column)), 0.5, colors.grey))
            style_commands.append(('INNERGRID', (col, 1), (col, len(column)), 0.25, colors.lightgrey))
        table.setStyle(TableStyle(style_commands))
        elements.append(table)

    summary = bracket_summary(bracket)
    if summary['champion']:
        elements.append(Spacer(1, 10))
        elements.append(Paragraph(f'Blessed Intercessor: {escape(summary["champion"]["name"])}', header_style))

    doc.build(elements)
    return buffer.getvalue()


def save_bracket_pdf(bracket: Dict, data_dir: str) -> str:
    """Write the PDF under ``data_dir`` and return its path relative to it."""
    relative_path = pdf_relative_path(bracket)
    path = os.path.join(data_dir, relative_path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'wb') as f:
        f.write(render_bracket_pdf(bracket))
    return relative_path
