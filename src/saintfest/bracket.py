"""
Single elimination bracket generation and management.
"""
import math
import random
import uuid
from typing import List, Dict, Tuple, Optional

from saintfest.errors import Conflict, NotFound, SaintfestError
from saintfest.models import category_display_name, now_utc

SAINTS_PER_CATEGORY = 8
CATEGORIES_PER_BRACKET = 4
BRACKET_SIZE = SAINTS_PER_CATEGORY * CATEGORIES_PER_BRACKET
RECENT_USE_YEARS = 2

# Category quadrants, filled in the order categories are given
QUADRANTS = ['top-left', 'bottom-left', 'top-right', 'bottom-right']
CATEGORY_COLORS = ['#8FBC8F', '#B8860B', '#4682B4', '#A0522D']
COLOR_PALETTE = {
    'background': '#FFFFFF',
    'lines': '#374151',
    'text': '#1F2937',
    'accent': '#8FBC8F',
}


def get_round_name(round_number: int, total_rounds: int) -> str:
    """Get the name of a round based on its distance from the final."""
    rounds_from_end = total_rounds - round_number + 1
    if rounds_from_end == 1:
        return "Final"
    elif rounds_from_end == 2:
        return "Semifinals"
    elif rounds_from_end == 3:
        return "Quarterfinals"
    elif rounds_from_end == 4:
        return "Round of 16"
    elif rounds_from_end == 5:
        return "Round of 32"
    elif rounds_from_end == 6:
        return "Round of 64"
    else:
        return f"Round {round_number}"


def calculate_total_rounds(size: int) -> int:
    """Number of rounds (log2 of bracket size) for a power-of-two bracket."""
    if size < 2 or size & (size - 1):
        raise SaintfestError(f'Bracket size must be a power of two (got {size})')
    return int(math.log2(size))


def _empty_match(round_number: int, match_number: int, is_left_side: bool) -> Dict:
    return {
        'match_id': f'round{round_number}_match{match_number}',
        'round_number': round_number,
        'match_number': match_number,
        'saint1_id': '',
        'saint2_id': '',
        'saint1_name': '',
        'saint2_name': '',
        'votes_for_saint1': 0,
        'votes_for_saint2': 0,
        'winner_id': None,
        'is_left_side': is_left_side,
        'is_championship': False,
    }


def generate_bracket_structure(entries: List[Dict], year: int) -> Dict:
    """
    Build the rounds of a bracket from an ordered list of entries.

    Entry 2i plays entry 2i+1 in the first round. Later rounds are
    pre-allocated with empty slots that fill as winners advance.

    Each entry is a dict with 'id', 'name' and optionally 'category_id'.
    """
    size = len(entries)
    total_rounds = calculate_total_rounds(size)
    rounds = []

    first_round = []
    half = size // 4
    for i in range(0, size, 2):
        match_number = i // 2 + 1
        match = _empty_match(1, match_number, is_left_side=match_number <= half or size == 2)
        match.update({
            'saint1_id': entries[i]['id'],
            'saint2_id': entries[i + 1]['id'],
            'saint1_name': entries[i]['name'],
            'saint2_name': entries[i + 1]['name'],
        })
        if entries[i].get('category_id'):
            match['category_id'] = entries[i]['category_id']
        first_round.append(match)
    if total_rounds == 1:
        first_round[0]['is_championship'] = True
    rounds.append({
        'round_number': 1,
        'round_name': get_round_name(1, total_rounds),
        'matches': first_round,
    })

    for round_number in range(2, total_rounds + 1):
        num_matches = 2 ** (total_rounds - round_number)
        matches = []
        for i in range(num_matches):
            match_number = i + 1
            match = _empty_match(round_number, match_number, is_left_side=match_number <= num_matches // 2)
            if round_number == total_rounds:
                match['is_championship'] = True
            matches.append(match)
        rounds.append({
            'round_number': round_number,
            'round_name': get_round_name(round_number, total_rounds),
            'matches': matches,
        })

    return {
        'year': year,
        'size': size,
        'total_rounds': total_rounds,
        'rounds': rounds,
    }


def select_category_saints(saints: List[Dict], category: str, rng: random.Random,
                           count: int = SAINTS_PER_CATEGORY, exclude: Optional[set] = None,
                           year: Optional[int] = None) -> List[Dict]:
    """
    Randomly pick ``count`` saints carrying the category flag.

    Saints in ``exclude`` and saints used in a bracket within the last
    two years (relative to ``year``) are not eligible.
    """
    exclude = exclude or set()
    eligible = []
    for saint in saints:
        if saint.get(category) is not True or saint.get('id') in exclude:
            continue
        last_used = saint.get('last_used_year')
        if year is not None and last_used is not None and year - last_used < RECENT_USE_YEARS:
            continue
        eligible.append(saint)

    if len(eligible) < count:
        raise SaintfestError(
            f'Category "{category}" only has {len(eligible)} saints, need at least {count}'
        )
    return rng.sample(eligible, count)


def _bracket_saints(selected: List[Dict]) -> List[Dict]:
    return [{
        'saint_id': saint['id'],
        'name': saint['name'],
        'seed': index + 1,
        'image_url': saint.get('image_url'),
        'eliminated': False,
    } for index, saint in enumerate(selected)]


def generate_bracket(saints: List[Dict], year: int, categories: List[str],
                     rng: Optional[random.Random] = None, title: Optional[str] = None) -> Dict:
    """
    Generate a 32-saint tournament: 8 random saints from each of 4 categories.

    Categories fill the quadrants top-left, bottom-left, top-right,
    bottom-right, so the first two categories form the left half.
    """
    if not year:
        raise SaintfestError('Year and categories are required')
    if not categories:
        raise SaintfestError('Year and categories are required')
    if len(categories) != CATEGORIES_PER_BRACKET or len(set(categories)) != CATEGORIES_PER_BRACKET:
        raise SaintfestError('Exactly 4 categories are required for tournament bracket')

    rng = rng or random.Random()
    used = set()
    bracket_categories = []
    entries = []
    for index, category in enumerate(categories):
        selected = select_category_saints(saints, category, rng, exclude=used, year=year)
        used.update(s['id'] for s in selected)
        category_id = f'{year}-{category}'
        bracket_categories.append({
            'id': category_id,
            'name': category_display_name(category),
            'category_key': category,
            'position': QUADRANTS[index],
            'color': CATEGORY_COLORS[index],
            'saints': _bracket_saints(selected),
        })
        entries.extend({'id': s['id'], 'name': s['name'], 'category_id': category_id} for s in selected)

    bracket = generate_bracket_structure(entries, year)
    bracket.update({
        'id': uuid.uuid4().hex,
        'title': title or f'Saintfest {year}',
        'categories': bracket_categories,
        'color_palette': dict(COLOR_PALETTE),
        'created_at': now_utc().isoformat(),
        'download_url': None,
    })
    return bracket


def iter_matches(bracket: Dict):
    for round_data in bracket.get('rounds', []):
        for match in round_data['matches']:
            yield match


def find_match(bracket: Dict, match_id: str) -> Dict:
    for match in iter_matches(bracket):
        if match['match_id'] == match_id:
            return match
    raise NotFound(f'Match {match_id} not found')


def _round(bracket: Dict, round_number: int) -> Optional[Dict]:
    for round_data in bracket.get('rounds', []):
        if round_data['round_number'] == round_number:
            return round_data
    return None


def next_slot(round_number: int, match_number: int) -> Tuple[int, int, int]:
    """Where the winner of a match goes: (round, match_number, slot)."""
    return round_number + 1, (match_number + 1) // 2, 1 if match_number % 2 else 2


def _set_eliminated(bracket: Dict, saint_id: str, eliminated: bool):
    for category in bracket.get('categories', []):
        for saint in category['saints']:
            if saint['saint_id'] == saint_id:
                saint['eliminated'] = eliminated


def _vote_count(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise SaintfestError('Vote counts must be integers')
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise SaintfestError('Vote counts must be integers')
    if count < 0:
        raise SaintfestError('Vote counts cannot be negative')
    return count


def record_match_result(bracket: Dict, match_id: str, winner_id: str,
                        votes_for_saint1: Optional[int] = None,
                        votes_for_saint2: Optional[int] = None) -> Dict:
    """
    Store a decided matchup and advance the winner into the next round.

    Returns the updated match. The bracket is modified in place.
    """
    match = find_match(bracket, match_id)
    if not match['saint1_id'] or not match['saint2_id']:
        raise SaintfestError(f'Match {match_id} does not have both saints yet')
    if winner_id not in (match['saint1_id'], match['saint2_id']):
        raise SaintfestError(f'Saint {winner_id} is not part of match {match_id}')
    votes_for_saint1 = _vote_count(votes_for_saint1)
    votes_for_saint2 = _vote_count(votes_for_saint2)

    next_round = _round(bracket, match['round_number'] + 1)
    target = None
    slot = None
    if next_round is not None:
        _, next_number, slot = next_slot(match['round_number'], match['match_number'])
        target = next_round['matches'][next_number - 1]
        if target.get('winner_id'):
            raise Conflict(f'Match {target["match_id"]} is already decided; cannot change {match_id}')

    if match.get('winner_id'):
        previous_loser = match['saint2_id'] if match['winner_id'] == match['saint1_id'] else match['saint1_id']
        _set_eliminated(bracket, previous_loser, False)

    if votes_for_saint1 is not None:
        match['votes_for_saint1'] = votes_for_saint1
    if votes_for_saint2 is not None:
        match['votes_for_saint2'] = votes_for_saint2
    match['winner_id'] = winner_id
    loser_id = match['saint2_id'] if winner_id == match['saint1_id'] else match['saint1_id']
    _set_eliminated(bracket, loser_id, True)

    winner_name = match['saint1_name'] if winner_id == match['saint1_id'] else match['saint2_name']
    if target is not None:
        target[f'saint{slot}_id'] = winner_id
        target[f'saint{slot}_name'] = winner_name
        target['votes_for_saint1'] = 0
        target['votes_for_saint2'] = 0
    return match


def _winner_name(match: Dict) -> Optional[str]:
    if not match.get('winner_id'):
        return None
    return match['saint1_name'] if match['winner_id'] == match['saint1_id'] else match['saint2_name']


def bracket_summary(bracket: Dict) -> Dict:
    """
    Progress of a bracket: the champion (Blessed Intercessor), the four
    semifinalists (Consecrated Quaternary) and the round now being voted.
    """
    total_rounds = bracket.get('total_rounds', 0)
    final_round = _round(bracket, total_rounds)
    champion = None
    if final_round and final_round['matches'] and final_round['matches'][0].get('winner_id'):
        final = final_round['matches'][0]
        champion = {'saint_id': final['winner_id'], 'name': _winner_name(final)}

    quaternary = []
    semifinals = _round(bracket, total_rounds - 1) if total_rounds >= 2 else None
    if semifinals:
        for match in semifinals['matches']:
            for slot in (1, 2):
                if match[f'saint{slot}_id']:
                    quaternary.append({'saint_id': match[f'saint{slot}_id'],
                                       'name': match[f'saint{slot}_name']})

    current_round = None
    for round_data in bracket.get('rounds', []):
        if any(m['saint1_id'] and m['saint2_id'] and not m.get('winner_id') for m in round_data['matches']):
            current_round = {'round_number': round_data['round_number'],
                             'round_name': round_data['round_name']}
            break

    decided = sum(1 for m in iter_matches(bracket) if m.get('winner_id'))
    return {
        'champion': champion,
        'quaternary': quaternary,
        'current_round': current_round,
        'decided_matches': decided,
        'total_matches': sum(len(r['matches']) for r in bracket.get('rounds', [])),
        'completed': champion is not None,
    }


def _ensure_editable(bracket: Dict):
    first_round = _round(bracket, 1)
    if first_round and any(m.get('winner_id') for m in first_round['matches']):
        raise Conflict('Bracket can no longer be edited once results are recorded')


def _category_index(bracket: Dict, category_id: str) -> int:
    for index, category in enumerate(bracket.get('categories', [])):
        if category['id'] == category_id:
            return index
    raise NotFound(f'Category {category_id} not found')


def _rebuild_category_matches(bracket: Dict, category_index: int):
    """Re-pair the first-round matches belonging to one category."""
    category = bracket['categories'][category_index]
    first_round = _round(bracket, 1)
    per_category = len(category['saints']) // 2
    start = category_index * per_category
    for i in range(per_category):
        saint1 = category['saints'][i * 2]
        saint2 = category['saints'][i * 2 + 1]
        match = first_round['matches'][start + i]
        match.update({
            'saint1_id': saint1['saint_id'],
            'saint2_id': saint2['saint_id'],
            'saint1_name': saint1['name'],
            'saint2_name': saint2['name'],
            'votes_for_saint1': 0,
            'votes_for_saint2': 0,
            'category_id': category['id'],
        })


def _used_saint_ids(bracket: Dict) -> set:
    return {s['saint_id'] for c in bracket.get('categories', []) for s in c['saints']}


def swap_saint(bracket: Dict, category_id: str, saint_id: str, new_saint: Dict) -> Dict:
    """Replace one saint of a category, keeping its seed."""
    _ensure_editable(bracket)
    category = bracket['categories'][_category_index(bracket, category_id)]
    position = next((i for i, s in enumerate(category['saints']) if s['saint_id'] == saint_id), None)
    if position is None:
        raise NotFound(f'Saint {saint_id} not found in category')
    if new_saint.get(category['category_key']) is not True:
        raise SaintfestError(f'Saint {new_saint.get("name")} is not in category {category["name"]}')
    if new_saint['id'] in _used_saint_ids(bracket):
        raise Conflict(f'Saint {new_saint["name"]} is already in the bracket')

    category['saints'][position] = {
        'saint_id': new_saint['id'],
        'name': new_saint['name'],
        'seed': category['saints'][position]['seed'],
        'image_url': new_saint.get('image_url'),
        'eliminated': False,
    }
    _rebuild_category_matches(bracket, _category_index(bracket, category_id))
    return bracket


def regenerate_category(bracket: Dict, category_id: str, saints: List[Dict],
                        rng: Optional[random.Random] = None) -> Dict:
    """Draw a fresh set of saints for a category."""
    _ensure_editable(bracket)
    index = _category_index(bracket, category_id)
    category = bracket['categories'][index]
    used = _used_saint_ids(bracket)
    selected = select_category_saints(saints, category['category_key'], rng or random.Random(),
                                      exclude=used, year=bracket.get('year'))
    category['saints'] = _bracket_saints(selected)
    _rebuild_category_matches(bracket, index)
    return bracket


def swap_category(bracket: Dict, category_id: str, new_category: str, saints: List[Dict],
                  rng: Optional[random.Random] = None) -> Dict:
    """Replace a whole category with saints drawn from another one."""
    _ensure_editable(bracket)
    index = _category_index(bracket, category_id)
    if any(c['category_key'] == new_category for c in bracket['categories']):
        raise Conflict(f'Category {new_category} is already in the bracket')
    category = bracket['categories'][index]
    used = _used_saint_ids(bracket) - {s['saint_id'] for s in category['saints']}
    selected = select_category_saints(saints, new_category, rng or random.Random(),
                                      exclude=used, year=bracket.get('year'))
    category.update({
        'id': f'{bracket.get("year")}-{new_category}',
        'name': category_display_name(new_category),
        'category_key': new_category,
        'saints': _bracket_saints(selected),
    })
    _rebuild_category_matches(bracket, index)
    return bracket


def apply_edit(bracket: Dict, action: Dict, saints: List[Dict], rng: Optional[random.Random] = None) -> Dict:
    """Dispatch an admin edit action to the matching operation."""
    action_type = action.get('type')
    if action_type == 'swap-saint':
        new_saint = next((s for s in saints if s.get('id') == action.get('new_saint_id')), None)
        if new_saint is None:
            raise NotFound(f'New saint {action.get("new_saint_id")} not found')
        return swap_saint(bracket, action.get('category_id'), action.get('saint_id'), new_saint)
    elif action_type == 'swap-category':
        return swap_category(bracket, action.get('category_id'), action.get('new_category_key'), saints, rng)
    elif action_type == 'regenerate-category':
        return regenerate_category(bracket, action.get('category_id'), saints, rng)
    raise SaintfestError(f'Unknown edit action: {action_type}')


def mark_saints_used(saints: Dict[str, Dict], bracket: Dict):
    """Stamp the bracket year on every saint it draws, in place."""
    for saint_id in _used_saint_ids(bracket):
        if saint_id in saints:
            saints[saint_id]['last_used_year'] = bracket.get('year')
