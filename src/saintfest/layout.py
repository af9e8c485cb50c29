"""
Bracket drawing geometry.

Positions are computed for a two-sided bracket: the first half of each
round is drawn on the left growing rightwards, the second half on the
right growing leftwards, and the final sits in the centre.
"""
import math
from typing import List, Dict, Optional

from reportlab.pdfbase.pdfmetrics import stringWidth

FONT_NAME = 'Helvetica'
DEFAULT_FONT_SIZE = 14

MIN_LINE_LENGTH = 180
LINE_PADDING = 80
LINE_STEP = 20
DEFAULT_WIDTH = 1200
DEFAULT_HEIGHT = 800
EMPTY_WIDTH = 800
EMPTY_HEIGHT = 600

LAYOUT_CONSTANTS = {
    'round_spacing': 60,
    'match_spacing': 24,
    'match_height': 50,
    'title_height': 120,
    'margin_left': 40,
    'margin_right': 40,
    'margin_top': 40,
    'margin_bottom': 40,
    'junction_length': 20,
    'line_thickness': 2,
}


def calculate_text_width(text: str, font_size: int = DEFAULT_FONT_SIZE) -> float:
    """Rendered width of ``text`` in points using Helvetica metrics."""
    return stringWidth(text or '', FONT_NAME, font_size)


def _saint_names(bracket: Dict) -> List[str]:
    names = []
    for round_data in bracket.get('rounds', []):
        for match in round_data['matches']:
            names.append(match.get('saint1_name') or 'TBD')
            names.append(match.get('saint2_name') or 'TBD')
    for category in bracket.get('categories', []):
        names.extend(s.get('name') or 'TBD' for s in category.get('saints', []))
    return names


def calculate_bracket_line_config(bracket: Dict) -> Dict:
    """
    Uniform line length for every match, wide enough for the longest name.

    The length is at least 180 and always a multiple of 20.
    """
    names = _saint_names(bracket) or ['TBD']
    max_text_width = max(calculate_text_width(name) for name in names)
    needed = max(MIN_LINE_LENGTH, max_text_width + LINE_PADDING)
    line_length = int(math.ceil(needed / LINE_STEP) * LINE_STEP)
    return {
        'line_length': line_length,
        'max_text_width': max_text_width,
        'total_width': DEFAULT_WIDTH,
        'total_height': DEFAULT_HEIGHT,
    }


def bracket_dimensions(bracket: Optional[Dict]) -> Dict:
    if not bracket or not bracket.get('rounds'):
        return {
            'line_length': MIN_LINE_LENGTH,
            'max_text_width': 0,
            'total_width': EMPTY_WIDTH,
            'total_height': EMPTY_HEIGHT,
        }
    return calculate_bracket_line_config(bracket)


def _center_y(position: Dict) -> float:
    return position['y'] + position['height'] / 2


def _round_x(round_number: int, is_left_side: bool, line_length: int, total_width: float) -> float:
    c = LAYOUT_CONSTANTS
    step = line_length + c['round_spacing']
    if is_left_side:
        return c['margin_left'] + (round_number - 1) * step
    return total_width - c['margin_right'] - line_length - (round_number - 1) * step


def _connection(connection_id: str, kind: str, x1: float, y1: float, x2: float, y2: float) -> Dict:
    return {
        'id': connection_id,
        'type': kind,
        'x1': x1,
        'y1': y1,
        'x2': x2,
        'y2': y2,
        'stroke_width': LAYOUT_CONSTANTS['line_thickness'],
    }


def _pair_connections(round_number: int, pair: int, first: Dict, second: Dict,
                      target: Dict, is_left_side: bool) -> List[Dict]:
    """Two stubs, a vertical junction and a line into the next match."""
    c = LAYOUT_CONSTANTS
    prefix = f'round{round_number}_pair{pair}'
    y1 = _center_y(first)
    y2 = _center_y(second)
    target_y = _center_y(target)
    if is_left_side:
        exit_x = first['x'] + first['width']
        junction_x = exit_x + c['junction_length']
        entry_x = target['x']
    else:
        exit_x = first['x']
        junction_x = exit_x - c['junction_length']
        entry_x = target['x'] + target['width']
    return [
        _connection(f'{prefix}_stub1', 'horizontal', exit_x, y1, junction_x, y1),
        _connection(f'{prefix}_stub2', 'horizontal', exit_x, y2, junction_x, y2),
        _connection(f'{prefix}_vertical', 'vertical', junction_x, min(y1, y2), junction_x, max(y1, y2)),
        _connection(f'{prefix}_to_next', 'horizontal', junction_x, target_y, entry_x, target_y),
    ]


def calculate_tournament_layout(bracket: Dict) -> Dict:
    """
    Compute absolute positions for every match of a bracket and the lines
    joining consecutive rounds.

    Returns a dict with 'matches' (match_id -> position), 'connections',
    'width', 'height', 'line_length' and the margins used.
    """
    c = LAYOUT_CONSTANTS
    config = bracket_dimensions(bracket)
    line_length = config['line_length']
    rounds = bracket.get('rounds', [])
    if not rounds:
        return {
            'matches': {},
            'connections': [],
            'width': config['total_width'],
            'height': config['total_height'],
            'line_length': line_length,
            'margins': {k: c[k] for k in ('margin_left', 'margin_right', 'margin_top', 'margin_bottom')},
        }

    total_rounds = len(rounds)
    match_height = c['match_height']
    slot_height = match_height + c['match_spacing']
    first_round = rounds[0]['matches']
    per_side = max(1, len(first_round) // 2)

    side_rounds = max(total_rounds - 1, 0)
    columns = 2 * side_rounds + 1
    width = (c['margin_left'] + c['margin_right'] + columns * line_length
             + (columns - 1) * c['round_spacing'])
    width = max(width, config['total_width'])
    height = max(c['title_height'] + per_side * slot_height + c['margin_bottom'], config['total_height'])

    positions = {}
    connections = []
    previous = []
    for round_data in rounds:
        round_number = round_data['round_number']
        matches = round_data['matches']
        current = []
        for index, match in enumerate(matches):
            is_championship = round_number == total_rounds
            if round_number == 1 and not is_championship:
                is_left_side = match.get('is_left_side', index < len(matches) // 2)
                side_index = index if is_left_side else index - len(matches) // 2
                x = _round_x(1, is_left_side, line_length, width)
                y = c['title_height'] + side_index * slot_height + (slot_height - match_height) / 2
            else:
                first = previous[index * 2] if len(previous) > index * 2 else None
                second = previous[index * 2 + 1] if len(previous) > index * 2 + 1 else None
                if first is not None and second is not None:
                    y = (_center_y(first) + _center_y(second)) / 2 - match_height / 2
                else:
                    y = height / 2 - match_height / 2
                if is_championship:
                    is_left_side = False
                    x = width / 2 - line_length / 2
                else:
                    is_left_side = match.get('is_left_side', index < len(matches) // 2)
                    x = _round_x(round_number, is_left_side, line_length, width)

            position = {
                'x': x,
                'y': y,
                'width': line_length,
                'height': match_height,
                'line_length': line_length,
                'is_left_side': is_left_side,
                'is_championship': is_championship,
                'round_number': round_number,
            }
            positions[match['match_id']] = position
            current.append(position)

            if round_number > 1 and len(previous) > index * 2 + 1:
                first = previous[index * 2]
                second = previous[index * 2 + 1]
                if is_championship and first['is_left_side'] != second['is_left_side']:
                    for slot, feeder in enumerate((first, second), start=1):
                        exit_x = feeder['x'] + feeder['width'] if feeder['is_left_side'] else feeder['x']
                        entry_x = x if feeder['is_left_side'] else x + line_length
                        connections.append(_connection(
                            f'round{round_number - 1}_final_feed{slot}', 'horizontal',
                            exit_x, _center_y(feeder), entry_x, _center_y(feeder)))
                else:
                    connections.extend(_pair_connections(round_number - 1, index + 1, first, second,
                                                          position, first['is_left_side']))
        previous = current

    return {
        'matches': positions,
        'connections': connections,
        'width': width,
        'height': height,
        'line_length': line_length,
        'margins': {k: c[k] for k in ('margin_left', 'margin_right', 'margin_top', 'margin_bottom')},
    }
