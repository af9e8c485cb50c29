"""
Saint data import from the roster spreadsheet (Excel upload or CSV export).
"""
import csv
import io
import logging
import re
from typing import Dict, List, Tuple

import openpyxl
import requests

from saintfest.errors import SaintfestError
from saintfest.models import CATEGORY_FIELDS, now_utc, saint_id_from_name

logger = logging.getLogger(__name__)

# Column B holds the name, J..AJ hold the category flags
EXCEL_NAME_COLUMN = 1
EXCEL_FIRST_CATEGORY_COLUMN = 9
EXCEL_FIRST_DATA_ROW = 3
HEADER_SEARCH_LINES = 10
SHEET_FETCH_TIMEOUT = 30


def _excel_flag(value) -> bool:
    text = str(value).strip().lower()
    if text in ('true', '1'):
        return True
    try:
        return int(text) > 0
    except ValueError:
        return False


def parse_excel(stream) -> Tuple[List[Dict], int]:
    """
    Parse the roster workbook into saint records.

    The first worksheet is read. Rows 1-2 are headings; saints start at
    row 3 with the name in column B and category flags in columns J..AJ.

    Returns (saints, data_row_count).
    """
    try:
        workbook = openpyxl.load_workbook(stream, data_only=True)
    except Exception as e:
        raise SaintfestError(f'Could not read Excel file: {e}')
    worksheet = workbook.worksheets[0] if workbook.worksheets else None
    if worksheet is None:
        raise SaintfestError('No worksheet found in Excel file')

    rows = [list(row) for row in worksheet.iter_rows(values_only=True)]
    if len(rows) < EXCEL_FIRST_DATA_ROW:
        raise SaintfestError('Excel file needs at least 3 rows (names start at row 3)')

    data_rows = rows[EXCEL_FIRST_DATA_ROW - 1:]
    saints = []
    now = now_utc().isoformat()
    for index, row in enumerate(data_rows):
        row_number = index + EXCEL_FIRST_DATA_ROW
        raw_name = row[EXCEL_NAME_COLUMN] if len(row) > EXCEL_NAME_COLUMN else None
        if raw_name is None or len(str(raw_name).strip()) < 2:
            logger.warning(f'Row {row_number}: skipping saint with invalid name: {raw_name!r}')
            continue
        name = str(raw_name).strip()
        if name in ('TRUE', 'FALSE'):
            logger.warning(f'Row {row_number}: skipping invalid name: {name}')
            continue

        saint = {
            'id': saint_id_from_name(name),
            'name': name,
            'created_at': now,
            'updated_at': now,
        }
        for offset, field in enumerate(CATEGORY_FIELDS):
            col = EXCEL_FIRST_CATEGORY_COLUMN + offset
            if col >= len(row):
                break
            value = row[col]
            if value is None or value == '':
                continue
            saint[field] = _excel_flag(value)
        saints.append(saint)

    logger.info(f'Parsed {len(saints)} saints from {len(data_rows)} Excel rows')
    return saints, len(data_rows)


def _normalize_header(header: str) -> str:
    return re.sub(r'\s+', '', header.strip().lower())


def _parse_int(value: str):
    try:
        return int(value.strip())
    except (ValueError, AttributeError):
        return None


def _find_header_row(rows: List[List[str]]) -> int:
    for i, row in enumerate(rows[:HEADER_SEARCH_LINES]):
        if any('name' in cell.strip().lower() for cell in row):
            return i
    return -1


def parse_csv(text: str) -> Tuple[List[Dict], int]:
    """
    Parse a CSV export of the roster spreadsheet.

    The header row is the first of the leading lines with a column whose
    title contains "name". Category columns are stored under their
    normalized header (lower-case, spaces and slashes removed).

    Returns (saints, data_row_count).
    """
    rows = [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]
    if len(rows) < 2:
        raise SaintfestError('CSV file appears to be empty or invalid')

    header_index = _find_header_row(rows)
    if header_index == -1:
        raise SaintfestError('Could not find header row with "Name" column')

    headers = [_normalize_header(h).replace('/', '') for h in rows[header_index]]
    name_index = next(i for i, h in enumerate(headers) if 'name' in h)
    data_rows = rows[header_index + 1:]

    saints = []
    now = now_utc().isoformat()
    for values in data_rows:
        values = [v.strip() for v in values]
        name = values[name_index] if name_index < len(values) else ''
        if len(values) < 5 or not name:
            continue

        saint = {'created_at': now, 'updated_at': now}
        for i, header in enumerate(headers):
            value = values[i] if i < len(values) else ''
            if i == name_index:
                saint['name'] = re.sub(r"[^\w\s\-'.()]", '', value).strip()
            elif header in ('saintfestappearance', 'birthyear', 'deathyear'):
                number = _parse_int(value)
                if number is not None:
                    key = {
                        'saintfestappearance': 'saintfest_appearance',
                        'birthyear': 'birth_year',
                        'deathyear': 'death_year',
                    }[header]
                    saint[key] = number
            elif header in ('hagiography', 'hagiogrpahy'):
                saint['hagiography'] = value
            elif header == 'origin':
                saint['origin'] = value
            elif header == 'locationoflabor':
                saint['location_of_labor'] = value
            elif header == 'tags':
                saint['tags'] = value
            elif header in CATEGORY_FIELDS:
                saint[header] = value.lower() == 'true'

        if saint.get('name'):
            saint['id'] = saint_id_from_name(saint['name'])
            saints.append(saint)

    logger.info(f'Parsed {len(saints)} saints from {len(data_rows)} CSV rows')
    return saints, len(data_rows)


def fetch_sheet_csv(url: str) -> str:
    """Download a published spreadsheet as CSV text."""
    try:
        response = requests.get(url, timeout=SHEET_FETCH_TIMEOUT)
    except requests.RequestException as e:
        raise SaintfestError(f'Failed to fetch CSV: {e}', status=502)
    if not response.ok:
        raise SaintfestError(f'Failed to fetch CSV: {response.reason}', status=502)
    return response.text


def merge_saints(existing: Dict[str, Dict], incoming: List[Dict]) -> Dict[str, int]:
    """
    Upsert incoming saint records into ``existing`` (keyed by id), in place.

    Existing saints keep fields the import does not mention.
    """
    imported = updated = skipped = 0
    now = now_utc().isoformat()
    for saint in incoming:
        saint_id = saint.get('id')
        if not saint_id:
            skipped += 1
            continue
        if saint_id in existing:
            merged = dict(existing[saint_id])
            merged.update({k: v for k, v in saint.items() if k != 'created_at'})
            merged['updated_at'] = now
            existing[saint_id] = merged
            updated += 1
        else:
            existing[saint_id] = dict(saint)
            imported += 1
    return {'imported': imported, 'updated': updated, 'skipped': skipped}
