"""
Tests for the printable bracket PDF.
"""
import pytest
import sys
import os
import random

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from saintfest.bracket import generate_bracket, record_match_result
from saintfest.pdf import pdf_filename, pdf_relative_path, render_bracket_pdf, save_bracket_pdf


@pytest.fixture
def bracket(sample_saints):
    return generate_bracket(sample_saints, 2025, ['martyrs', 'virgins', 'bishop', 'mystic'],
                            rng=random.Random(9))


class TestPdfNames:
    def test_filename(self, bracket):
        assert pdf_filename(bracket) == 'Saintfest_2025_Bracket.pdf'
        assert pdf_filename({'title': None}) == 'Saintfest_Bracket.pdf'

    def test_relative_path(self, bracket):
        assert pdf_relative_path(bracket) == os.path.join('pdfs', '2025', f'{bracket["id"]}.pdf')


class TestRenderPdf:
    def test_render_fresh_bracket(self, bracket):
        content = render_bracket_pdf(bracket)
        assert content.startswith(b'%PDF')

    def test_render_completed_bracket(self, bracket):
        """Names with markup characters and a champion line still render."""
        bracket['rounds'][0]['matches'][0]['saint1_name'] = 'Peter & Paul <Apostles>'
        for round_data in bracket['rounds']:
            for match in round_data['matches']:
                record_match_result(bracket, match['match_id'], match['saint1_id'], 3, 1)
        content = render_bracket_pdf(bracket)
        assert content.startswith(b'%PDF')

    def test_render_empty_bracket(self):
        assert render_bracket_pdf({'title': 'Empty', 'rounds': []}).startswith(b'%PDF')

    def test_save(self, bracket, tmp_path):
        relative_path = save_bracket_pdf(bracket, str(tmp_path))
        path = tmp_path / relative_path
        assert path.exists()
        assert path.read_bytes().startswith(b'%PDF')
