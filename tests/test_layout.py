"""
Tests for bracket drawing geometry.
"""
import pytest
import sys
import os
import random

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from saintfest.bracket import generate_bracket, generate_bracket_structure
from saintfest.layout import (
    LAYOUT_CONSTANTS,
    MIN_LINE_LENGTH,
    bracket_dimensions,
    calculate_bracket_line_config,
    calculate_text_width,
    calculate_tournament_layout,
)


@pytest.fixture
def bracket(sample_saints):
    return generate_bracket(sample_saints, 2025, ['martyrs', 'virgins', 'bishop', 'mystic'],
                            rng=random.Random(11))


class TestTextWidth:
    def test_longer_text_is_wider(self):
        assert calculate_text_width('Augustine of Hippo') > calculate_text_width('Paul')

    def test_empty_text(self):
        assert calculate_text_width('') == 0

    def test_scales_with_font_size(self):
        assert calculate_text_width('Jerome', 28) == pytest.approx(2 * calculate_text_width('Jerome', 14))


class TestLineConfig:
    """Tests for uniform line length."""

    def test_minimum_length(self, bracket):
        config = calculate_bracket_line_config(bracket)
        assert config['line_length'] >= MIN_LINE_LENGTH
        assert config['line_length'] % 20 == 0
        assert config['total_width'] == 1200
        assert config['total_height'] == 800

    def test_long_name_widens_lines(self, bracket):
        long_name = 'Saint Teresa Benedicta of the Cross, Virgin and Martyr'
        bracket['rounds'][0]['matches'][0]['saint1_name'] = long_name
        config = calculate_bracket_line_config(bracket)
        assert config['line_length'] >= calculate_text_width(long_name) + 80
        assert config['line_length'] % 20 == 0

    def test_empty_bracket_dimensions(self):
        assert bracket_dimensions(None) == {
            'line_length': 180,
            'max_text_width': 0,
            'total_width': 800,
            'total_height': 600,
        }
        assert bracket_dimensions({'rounds': []})['total_width'] == 800


class TestTournamentLayout:
    """Tests for absolute match positions."""

    def test_every_match_positioned(self, bracket):
        layout = calculate_tournament_layout(bracket)
        assert len(layout['matches']) == 31
        for position in layout['matches'].values():
            assert position['width'] == layout['line_length']
            assert position['height'] == LAYOUT_CONSTANTS['match_height']
            assert 0 <= position['x'] <= layout['width']
            assert 0 <= position['y'] <= layout['height']

    def test_final_is_centered(self, bracket):
        layout = calculate_tournament_layout(bracket)
        final = layout['matches']['round5_match1']
        assert final['is_championship'] is True
        assert final['x'] + final['width'] / 2 == pytest.approx(layout['width'] / 2)

    def test_sides(self, bracket):
        layout = calculate_tournament_layout(bracket)
        center = layout['width'] / 2
        for match_number in range(1, 9):
            position = layout['matches'][f'round1_match{match_number}']
            assert position['is_left_side'] is True
            assert position['x'] + position['width'] < center
        for match_number in range(9, 17):
            position = layout['matches'][f'round1_match{match_number}']
            assert position['is_left_side'] is False
            assert position['x'] > center

    def test_later_round_between_feeders(self, bracket):
        layout = calculate_tournament_layout(bracket)
        first = layout['matches']['round1_match1']
        second = layout['matches']['round1_match2']
        target = layout['matches']['round2_match1']
        feeder_center = (first['y'] + second['y']) / 2
        assert target['y'] == pytest.approx(feeder_center)
        assert target['x'] > first['x']

    def test_connections(self, bracket):
        layout = calculate_tournament_layout(bracket)
        ids = {c['id'] for c in layout['connections']}
        assert 'round1_pair1_stub1' in ids
        assert 'round1_pair1_vertical' in ids
        assert 'round4_final_feed1' in ids
        assert 'round4_final_feed2' in ids
        # 14 pairs of four lines plus the two feeds into the final
        assert len(layout['connections']) == 14 * 4 + 2

    def test_empty_bracket(self):
        layout = calculate_tournament_layout({'rounds': []})
        assert layout['matches'] == {}
        assert layout['connections'] == []
        assert layout['width'] == 800

    def test_small_bracket(self):
        entries = [{'id': f's{i}', 'name': f'Saint {i}'} for i in range(4)]
        structure = generate_bracket_structure(entries, 2025)
        layout = calculate_tournament_layout(structure)
        assert set(layout['matches']) == {'round1_match1', 'round1_match2', 'round2_match1'}
        assert layout['matches']['round1_match1']['is_left_side'] is True
        assert layout['matches']['round1_match2']['is_left_side'] is False
