"""
Published bracket snapshots for the public site.

A snapshot is a flattened, self-contained copy of a bracket with every
match position already computed, so the front end can draw it without
further lookups.
"""
from datetime import datetime
from typing import List, Dict, Optional, Tuple

from saintfest.errors import NotFound, SaintfestError
from saintfest.layout import calculate_tournament_layout

LABEL_MARGIN = 10
LABEL_WIDTH = 200
LABEL_OFFSET = 100

SCALES = {'desktop': 1.0, 'tablet': 0.75, 'mobile': 0.5}
BREAKPOINTS = {'desktop': 1200, 'tablet': 768, 'mobile': 480}


def _seed_lookup(bracket: Dict) -> Dict[str, int]:
    seeds = {}
    for category in bracket.get('categories', []):
        for saint in category.get('saints', []):
            seeds[saint['saint_id']] = saint.get('seed')
    return seeds


def _published_match(match: Dict, position: Dict, seeds: Dict[str, int]) -> Dict:
    winner_id = match.get('winner_id')
    winner_name = None
    if winner_id:
        winner_name = match['saint1_name'] if winner_id == match['saint1_id'] else match['saint2_name']
    return {
        'id': match['match_id'],
        'round_number': match['round_number'],
        'match_number': match['match_number'],
        'saint1_name': match.get('saint1_name') or None,
        'saint2_name': match.get('saint2_name') or None,
        'saint1_seed': seeds.get(match.get('saint1_id')),
        'saint2_seed': seeds.get(match.get('saint2_id')),
        'votes_for_saint1': match.get('votes_for_saint1', 0),
        'votes_for_saint2': match.get('votes_for_saint2', 0),
        'winner_id': winner_id,
        'winner_name': winner_name,
        'position': {
            'x': position['x'],
            'y': position['y'],
            'width': position['width'],
            'height': position['height'],
        },
        'category_id': match.get('category_id'),
        'is_left_side': bool(position.get('is_left_side')),
        'is_championship': bool(position.get('is_championship')),
    }


def _quadrant_span(matches: List[Dict], category_id: str, total_height: float) -> Dict:
    quadrant = [m for m in matches if m['round_number'] == 1 and m.get('category_id') == category_id]
    if not quadrant:
        return {'center_y': total_height / 2, 'quadrant_height': 0}
    top = min(m['position']['y'] for m in quadrant)
    bottom = max(m['position']['y'] + m['position']['height'] for m in quadrant)
    return {'center_y': top + (bottom - top) / 2, 'quadrant_height': bottom - top}


def flatten_bracket(bracket: Dict, published_id: str, archive_id: str,
                    published_by: str, now: datetime) -> Dict:
    """Build the public snapshot of a bracket."""
    layout = calculate_tournament_layout(bracket)
    seeds = _seed_lookup(bracket)
    width = layout['width']
    height = layout['height']

    matches = []
    for round_data in bracket.get('rounds', []):
        for match in round_data['matches']:
            matches.append(_published_match(match, layout['matches'][match['match_id']], seeds))

    categories = []
    for category in bracket.get('categories', []):
        if category.get('position') in ('top-left', 'bottom-left'):
            label_x = LABEL_MARGIN
        else:
            label_x = width - LABEL_WIDTH - LABEL_MARGIN
        span = _quadrant_span(matches, category['id'], height)
        categories.append({
            'id': category['id'],
            'name': category['name'],
            'color': category.get('color'),
            'position': category.get('position'),
            'label_position': {
                'x': label_x,
                'y': span['center_y'] - LABEL_OFFSET,
                'center_y': span['center_y'],
                'quadrant_height': span['quadrant_height'],
            },
            'saints': [{'name': s['name'], 'seed': s.get('seed')} for s in category.get('saints', [])],
        })

    return {
        'id': published_id,
        'bracket_id': bracket.get('id'),
        'year': bracket.get('year'),
        'title': bracket.get('title'),
        'published_at': now.isoformat(),
        'published_by': published_by,
        'matches': matches,
        'categories': categories,
        'dimensions': {
            'total_width': width,
            'total_height': height,
            'scales': dict(SCALES),
            'breakpoints': dict(BREAKPOINTS),
        },
        'connections': [dict(c, color=None) for c in layout['connections']],
        'color_palette': bracket.get('color_palette'),
        'center_overlay': {
            'text': ['Blessed', 'Intercessor'],
            'x': width / 2,
            'y': height / 2,
            'font_size': 48,
            'color': 'rgba(55, 65, 81, 0.8)',
            'opacity': 0.8,
        },
        'archive_id': archive_id,
        'is_active': True,
    }


def publish_bracket(bracket: Dict, published: Dict[str, Dict], archives: Dict[str, Dict],
                    published_by: str, now: datetime) -> Tuple[Dict, Dict]:
    """
    Publish a bracket: archive a full copy, deactivate earlier snapshots of
    the same year and store the new one as current. Both collections are
    modified in place.
    """
    if not bracket or not bracket.get('rounds') or not published_by:
        raise SaintfestError('Tournament data and published_by are required')

    stamp = int(now.timestamp() * 1000)
    published_id = f'published_{bracket.get("year")}_{stamp}'
    archive_id = f'archive_{bracket.get("id")}_{stamp}'

    archive = {
        'id': archive_id,
        'original_tournament_id': bracket.get('id'),
        'archived_at': now.isoformat(),
        'archived_by': published_by,
        'tournament_data': bracket,
        'reason': 'published',
        'published_bracket_id': published_id,
    }
    snapshot = flatten_bracket(bracket, published_id, archive_id, published_by, now)

    for existing in published.values():
        if existing.get('year') == bracket.get('year') and existing.get('is_active'):
            existing['is_active'] = False

    archives[archive_id] = archive
    published[published_id] = snapshot
    return snapshot, archive


def current_published(published: Dict[str, Dict]) -> Optional[Dict]:
    """The most recently published active snapshot, if any."""
    active = [p for p in published.values() if p.get('is_active')]
    if not active:
        return None
    return max(active, key=lambda p: p.get('published_at') or '')


def published_for_year(published: Dict[str, Dict], year: int) -> Optional[Dict]:
    for snapshot in published.values():
        if snapshot.get('year') == year and snapshot.get('is_active'):
            return snapshot
    return None


def get_archive(archives: Dict[str, Dict], archive_id: str) -> Dict:
    archive = archives.get(archive_id)
    if archive is None:
        raise NotFound('Archive not found')
    return archive
