"""
Saint records and the category vocabulary used to build brackets.
"""
import re
from datetime import datetime
from typing import Dict, List, Optional

import pytz


# Spreadsheet columns J..AJ, in order
CATEGORY_FIELDS = [
    'eastern',
    'western',
    'evangelist',
    'martyrs',
    'confessors',
    'doctorsofthechurch',
    'virgins',
    'holywoman',
    'mystic',
    'convert',
    'blessed',
    'venerable',
    'missionary',
    'deacon',
    'priest',
    'bishop',
    'cardinal',
    'pope',
    'apostle',
    'abbotabbess',
    'hermit',
    'royalty',
    'religious',
    'lay',
    'groupcompanions',
    'churchfather',
    'oldtestament',
]

CATEGORY_DISPLAY_NAMES = {
    'eastern': 'Eastern',
    'western': 'Western',
    'evangelist': 'Evangelists',
    'martyrs': 'Martyrs',
    'confessors': 'Confessors',
    'doctorsofthechurch': 'Doctors of the Church',
    'virgins': 'Virgins',
    'holywoman': 'Holy Women',
    'mystic': 'Mystics',
    'convert': 'Converts',
    'blessed': 'Blessed',
    'venerable': 'Venerable',
    'missionary': 'Missionaries',
    'deacon': 'Deacons',
    'priest': 'Priests',
    'bishop': 'Bishops',
    'cardinal': 'Cardinals',
    'pope': 'Popes',
    'apostle': 'Apostles',
    'abbotabbess': 'Abbots & Abbesses',
    'hermit': 'Hermits',
    'royalty': 'Royalty',
    'religious': 'Religious',
    'lay': 'Lay Faithful',
    'groupcompanions': 'Groups & Companions',
    'churchfather': 'Church Fathers',
    'oldtestament': 'Old Testament',
}

PROFILE_FIELDS = [
    'name',
    'saintfest_appearance',
    'hagiography',
    'birth_year',
    'death_year',
    'origin',
    'location_of_labor',
    'tags',
    'image_url',
    'last_used_year',
]

PUBLIC_FIELDS = [
    'id',
    'name',
    'saintfest_appearance',
    'hagiography',
    'birth_year',
    'death_year',
    'origin',
    'location_of_labor',
    'tags',
    'image_url',
    'created_at',
    'updated_at',
]


def category_display_name(category: str) -> str:
    """Human-readable name for a category key."""
    return CATEGORY_DISPLAY_NAMES.get(category, category.replace('_', ' ').title())


def saint_id_from_name(name: str) -> str:
    """Deterministic document id for a saint name."""
    slug = re.sub(r'[^a-z0-9]', '-', name.lower())
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


class Saint:
    def __init__(self, name, saint_id=None, categories=None, **profile):
        self.id = saint_id or saint_id_from_name(name)
        self.name = name
        self.categories = dict(categories) if categories else {}
        self.profile = {k: v for k, v in profile.items() if k in PROFILE_FIELDS and k != 'name'}
        now = now_utc().isoformat()
        self.created_at = profile.get('created_at') or now
        self.updated_at = profile.get('updated_at') or now

    def in_category(self, category: str) -> bool:
        return self.categories.get(category) is True

    @classmethod
    def from_dict(cls, data: Dict) -> 'Saint':
        categories = {field: data[field] for field in CATEGORY_FIELDS if field in data}
        profile = {k: data.get(k) for k in PROFILE_FIELDS if k != 'name' and data.get(k) is not None}
        return cls(
            data.get('name', ''),
            saint_id=data.get('id'),
            categories=categories,
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
            **profile
        )

    def to_dict(self) -> Dict:
        data = {'id': self.id, 'name': self.name}
        data.update(self.profile)
        data.update(self.categories)
        data['created_at'] = self.created_at
        data['updated_at'] = self.updated_at
        return data

    def public_dict(self) -> Dict:
        """Profile fields safe to expose on the public API."""
        data = self.to_dict()
        return {field: data.get(field) for field in PUBLIC_FIELDS}

    def __repr__(self):
        return f"Saint(id={self.id}, name={self.name})"


def saints_in_category(saints: List[Dict], category: str) -> List[Dict]:
    """Filter saint records whose category flag is set."""
    return [s for s in saints if s.get(category) is True]


def category_counts(saints: List[Dict]) -> Dict[str, int]:
    """Number of saints carrying each category flag."""
    return {field: len(saints_in_category(saints, field)) for field in CATEGORY_FIELDS}


def find_saint(saints: List[Dict], saint_id: str) -> Optional[Dict]:
    for saint in saints:
        if saint.get('id') == saint_id:
            return saint
    return None


def now_utc() -> datetime:
    return datetime.now(pytz.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Read a stored ISO timestamp; naive values are taken as UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed
