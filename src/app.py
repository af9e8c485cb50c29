"""
Flask web application for Saintfest.
"""
import os
import hmac
import io
import random
import shutil
import yaml
import zipfile
from datetime import datetime, timedelta
from functools import wraps
from filelock import FileLock
from flask import Flask, request, jsonify, send_file, session
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash

from saintfest.bracket import (
    apply_edit, bracket_summary, generate_bracket, mark_saints_used, record_match_result,
)
from saintfest.errors import NotFound, SaintfestError
from saintfest.importer import fetch_sheet_csv, merge_saints, parse_csv, parse_excel
from saintfest.layout import bracket_dimensions, calculate_tournament_layout
from saintfest.models import (
    CATEGORY_FIELDS, PROFILE_FIELDS, Saint, category_counts, parse_timestamp,
)
from saintfest.pdf import pdf_filename, pdf_relative_path, save_bracket_pdf
from saintfest.posts import (
    DEFAULT_PAGE_SIZE, apply_update, approved_comments, build_comment, build_post,
    bulk_update, find_post_by_slug, list_posts, moderate_comment, post_stats, publish_scheduled,
)
from saintfest.publishing import current_published, get_archive, publish_bracket, published_for_year
from saintfest.voting import (
    build_session, build_vote, client_ip, close_session, create_voter_hash,
    find_session_for_post, get_timezone, now_utc, session_votes, tally, validate_vote,
)

app = Flask(__name__)


def _get_or_create_secret_key() -> bytes:
    """Get SECRET_KEY from env, or generate and persist to file."""
    env_key = os.environ.get('SECRET_KEY')
    if env_key:
        return env_key.encode() if isinstance(env_key, str) else env_key
    key_file = os.path.join(DATA_DIR, '.secret_key')
    if os.path.exists(key_file):
        with open(key_file, 'rb') as f:
            return f.read()
    key = os.urandom(24)
    os.makedirs(os.path.dirname(key_file), exist_ok=True)
    with open(key_file, 'wb') as f:
        f.write(key)
    return key


def _admin_password_hash():
    """Hash for the admin password, from env (pre-hashed or plain)."""
    password_hash = os.environ.get('SAINTFEST_ADMIN_PASSWORD_HASH')
    if password_hash:
        return password_hash
    password = os.environ.get('SAINTFEST_ADMIN_PASSWORD')
    if password:
        return generate_password_hash(password)
    return None


BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('SAINTFEST_DATA_DIR', os.path.join(BASE_DIR, 'data'))

SESSION_HOURS = 24
app.secret_key = _get_or_create_secret_key()
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(hours=SESSION_HOURS)

ADMIN_EMAIL = os.environ.get('SAINTFEST_ADMIN_EMAIL', 'admin@saintfest.local')
ADMIN_PASSWORD_HASH = _admin_password_hash()
API_TOKEN = os.environ.get('SAINTFEST_API_TOKEN')
VOTING_TIMEZONE = os.environ.get('SAINTFEST_TIMEZONE', 'America/Chicago')

MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10 MB
MAX_SITE_UPLOAD_SIZE = 50 * 1024 * 1024  # 50 MB for site-wide exports
# Directories to skip during export
SITE_EXPORT_SKIP_DIRS = {'__pycache__'}
# File extensions to skip during export
SITE_EXPORT_SKIP_EXTS = {'.pyc', '.lock'}
SITE_EXPORT_SKIP_FILES = {'.secret_key'}

COLLECTIONS = {
    'saints': 'saints.yaml',
    'brackets': 'brackets.yaml',
    'posts': 'posts.yaml',
    'comments': 'comments.yaml',
    'voting_sessions': 'voting_sessions.yaml',
    'votes': 'votes.yaml',
    'published_brackets': 'published_brackets.yaml',
    'archives': 'archives.yaml',
}

_locks = {}


def _data_lock() -> FileLock:
    """Process-wide lock for the current data directory."""
    if DATA_DIR not in _locks:
        os.makedirs(DATA_DIR, exist_ok=True)
        _locks[DATA_DIR] = FileLock(os.path.join(DATA_DIR, '.lock'), timeout=10)
    return _locks[DATA_DIR]


def _collection_path(name: str) -> str:
    return os.path.join(DATA_DIR, COLLECTIONS[name])


def load_collection(name: str) -> dict:
    """Load a collection from YAML as a dict keyed by record id."""
    path = _collection_path(name)
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except Exception as e:
        app.logger.warning(f'Failed to parse {path}: {e}')
        return {}
    records = data.get(name, []) if isinstance(data, dict) else []
    return {r['id']: r for r in records if isinstance(r, dict) and r.get('id')}


def save_collection(name: str, records: dict):
    """Save a collection to YAML."""
    os.makedirs(DATA_DIR, exist_ok=True)
    with open(_collection_path(name), 'w', encoding='utf-8') as f:
        yaml.dump({name: list(records.values())}, f, default_flow_style=False, allow_unicode=True)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _bearer_token_valid() -> bool:
    if not API_TOKEN:
        return False
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return False
    return hmac.compare_digest(API_TOKEN, auth_header[7:])


def _admin_session_valid() -> bool:
    if not session.get('admin'):
        return False
    logged_in_at = parse_timestamp(session.get('admin_login_at'))
    if logged_in_at is None or now_utc() - logged_in_at > timedelta(hours=SESSION_HOURS):
        session.clear()
        return False
    return True


def admin_required(f):
    """Require an admin session or a valid API token in the Authorization header."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if _bearer_token_valid() or _admin_session_valid():
            return f(*args, **kwargs)
        return jsonify({
            'success': False,
            'error': 'Admin authentication required',
            'requiresAuth': True,
        }), 401
    return decorated_function


def _current_admin() -> str:
    return session.get('admin') or 'api'


@app.errorhandler(SaintfestError)
def handle_saintfest_error(e):
    return jsonify({'success': False, 'error': e.message}), e.status


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'error': e.description}), e.code
        return e
    app.logger.error(f'Unhandled error on {request.method} {request.path}: {e}', exc_info=True)
    return jsonify({'success': False, 'error': 'Internal server error'}), 500


# Admin authentication

@app.route('/api/admin/login', methods=['POST'])
def api_admin_login():
    """Log the administrator in for 24 hours."""
    data = _json_body()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not email or not password:
        return jsonify({'success': False, 'error': 'Email and password are required'}), 400
    if not ADMIN_PASSWORD_HASH:
        app.logger.error('Admin login attempted but no admin password is configured')
        return jsonify({'success': False, 'error': 'Server not configured for admin login'}), 500
    if email != ADMIN_EMAIL.lower() or not check_password_hash(ADMIN_PASSWORD_HASH, password):
        app.logger.warning(f'Failed admin login for {email} from {request.remote_addr}')
        return jsonify({'success': False, 'error': 'Invalid email or password'}), 401

    session.clear()
    session['admin'] = email
    session['admin_login_at'] = now_utc().isoformat()
    session.permanent = True
    app.logger.info(f'Admin {email} logged in')
    expires_at = now_utc() + timedelta(hours=SESSION_HOURS)
    return jsonify({'success': True, 'email': email, 'expires_at': expires_at.isoformat()})


@app.route('/api/admin/logout', methods=['POST'])
def api_admin_logout():
    session.clear()
    return jsonify({'success': True})


@app.route('/api/admin/me')
@admin_required
def api_admin_me():
    return jsonify({
        'success': True,
        'email': session.get('admin'),
        'logged_in_at': session.get('admin_login_at'),
        'via_token': not session.get('admin'),
    })


# Saints

@app.route('/api/saints')
def api_saints():
    """Public saint profiles, sorted by name."""
    category = request.args.get('category')
    saints = list(load_collection('saints').values())
    if category:
        if category not in CATEGORY_FIELDS:
            return jsonify({'success': False, 'error': f'Unknown category: {category}'}), 400
        saints = [s for s in saints if s.get(category) is True]
    saints.sort(key=lambda s: (s.get('name') or '').lower())
    public = [Saint.from_dict(s).public_dict() for s in saints]
    return jsonify({'success': True, 'saints': public, 'count': len(public)})


@app.route('/api/saints/<saint_id>')
def api_saint(saint_id):
    saint = load_collection('saints').get(saint_id)
    if saint is None:
        return jsonify({'success': False, 'error': 'Saint not found'}), 404
    return jsonify({'success': True, 'saint': Saint.from_dict(saint).public_dict()})


@app.route('/api/admin/saints')
@admin_required
def api_admin_saints():
    """All saint records with category flags and per-category counts."""
    saints = sorted(load_collection('saints').values(), key=lambda s: (s.get('name') or '').lower())
    return jsonify({
        'success': True,
        'saints': saints,
        'count': len(saints),
        'category_counts': category_counts(saints),
    })


@app.route('/api/admin/saints/<saint_id>', methods=['PUT'])
@admin_required
def api_admin_update_saint(saint_id):
    data = _json_body()
    if 'name' in data and not (data.get('name') or '').strip():
        return jsonify({'success': False, 'error': 'Name cannot be empty'}), 400
    with _data_lock():
        saints = load_collection('saints')
        saint = saints.get(saint_id)
        if saint is None:
            return jsonify({'success': False, 'error': 'Saint not found'}), 404
        for field in PROFILE_FIELDS:
            if field in data:
                saint[field] = data[field].strip() if isinstance(data[field], str) else data[field]
        for field in CATEGORY_FIELDS:
            if field in data:
                saint[field] = bool(data[field])
        saint['updated_at'] = now_utc().isoformat()
        save_collection('saints', saints)
    return jsonify({'success': True, 'saint': saint})


@app.route('/api/admin/saints/<saint_id>', methods=['DELETE'])
@admin_required
def api_admin_delete_saint(saint_id):
    with _data_lock():
        saints = load_collection('saints')
        if saints.pop(saint_id, None) is None:
            return jsonify({'success': False, 'error': 'Saint not found'}), 404
        save_collection('saints', saints)
    app.logger.info(f'Saint {saint_id} deleted by {_current_admin()}')
    return jsonify({'success': True, 'message': 'Saint deleted successfully'})


def _import_saints(parsed: list, total_rows: int, source: str):
    with _data_lock():
        saints = load_collection('saints')
        counts = merge_saints(saints, parsed)
        save_collection('saints', saints)
    app.logger.info(f'Saint import from {source}: {counts["imported"]} new, '
                    f'{counts["updated"]} updated, {counts["skipped"]} skipped')
    return jsonify({
        'success': True,
        'imported': counts['imported'],
        'updated': counts['updated'],
        'skipped': counts['skipped'],
        'total_rows': total_rows,
        'message': f'Imported {counts["imported"]} new saints and updated {counts["updated"]}',
    })


@app.route('/api/admin/saints/import', methods=['POST'])
@admin_required
def api_admin_import_saints():
    """Import saints from an uploaded Excel workbook or CSV export."""
    file = request.files.get('file')
    if not file or file.filename == '':
        return jsonify({'success': False, 'error': 'No file uploaded'}), 400

    file_bytes = file.read()
    if len(file_bytes) > MAX_UPLOAD_SIZE:
        return jsonify({'success': False, 'error': f'File too large (max {MAX_UPLOAD_SIZE} bytes)'}), 400

    extension = os.path.splitext(file.filename)[1].lower()
    if extension in ('.xlsx', '.xlsm'):
        parsed, total_rows = parse_excel(io.BytesIO(file_bytes))
    elif extension == '.csv':
        try:
            text = file_bytes.decode('utf-8-sig')
        except UnicodeDecodeError:
            return jsonify({'success': False, 'error': 'CSV file must be UTF-8 encoded'}), 400
        parsed, total_rows = parse_csv(text)
    else:
        return jsonify({'success': False, 'error': 'Unsupported file type (use .xlsx or .csv)'}), 400

    return _import_saints(parsed, total_rows, file.filename)


@app.route('/api/admin/saints/import-sheet', methods=['POST'])
@admin_required
def api_admin_import_sheet():
    """Import saints from a spreadsheet published as CSV."""
    url = (_json_body().get('url') or '').strip()
    if not url.startswith(('http://', 'https://')):
        return jsonify({'success': False, 'error': 'A http(s) CSV URL is required'}), 400
    parsed, total_rows = parse_csv(fetch_sheet_csv(url))
    return _import_saints(parsed, total_rows, url)


@app.route('/api/admin/saints/wipe', methods=['POST', 'DELETE'])
@admin_required
def api_admin_wipe_saints():
    with _data_lock():
        saints = load_collection('saints')
        deleted = len(saints)
        save_collection('saints', {})
    app.logger.info(f'Admin {_current_admin()} wiped saints database ({deleted} records)')
    if not deleted:
        return jsonify({'success': True, 'message': 'Database is already empty', 'deletedCount': 0})
    return jsonify({'success': True, 'message': 'All saints deleted successfully', 'deletedCount': deleted})


# Brackets

def _get_bracket(bracket_id: str) -> dict:
    bracket = load_collection('brackets').get(bracket_id)
    if bracket is None:
        raise NotFound('Bracket not found')
    return bracket


def _year_key(record: dict):
    try:
        return int(record.get('year') or 0)
    except (TypeError, ValueError):
        return 0


@app.route('/api/brackets')
def api_brackets():
    """All brackets, newest year first."""
    brackets = sorted(load_collection('brackets').values(), key=_year_key, reverse=True)
    listing = [{
        'id': b['id'],
        'year': b.get('year'),
        'title': b.get('title'),
        'created_at': b.get('created_at'),
        'categories': [{'id': c['id'], 'name': c['name'], 'position': c.get('position')}
                       for c in b.get('categories', [])],
        'summary': bracket_summary(b),
    } for b in brackets]
    return jsonify({'success': True, 'brackets': listing, 'count': len(listing)})


@app.route('/api/brackets/<bracket_id>')
def api_bracket(bracket_id):
    bracket = _get_bracket(bracket_id)
    return jsonify({'success': True, 'bracket': bracket, 'summary': bracket_summary(bracket)})


@app.route('/api/bracket/current')
def api_current_bracket():
    """The bracket currently published on the site, or null."""
    snapshot = current_published(load_collection('published_brackets'))
    return jsonify({'success': True, 'bracket': snapshot})


@app.route('/api/bracket/published/<int:year>')
def api_published_bracket(year):
    snapshot = published_for_year(load_collection('published_brackets'), year)
    if snapshot is None:
        return jsonify({'success': False, 'error': f'No published bracket for {year}'}), 404
    return jsonify({'success': True, 'bracket': snapshot})


@app.route('/api/winners')
def api_winners():
    """Blessed Intercessor and Consecrated Quaternary of each year."""
    winners = []
    for bracket in sorted(load_collection('brackets').values(), key=_year_key, reverse=True):
        summary = bracket_summary(bracket)
        if not summary['champion'] and not summary['quaternary']:
            continue
        winners.append({
            'bracket_id': bracket['id'],
            'year': bracket.get('year'),
            'title': bracket.get('title'),
            'champion': summary['champion'],
            'quaternary': summary['quaternary'],
            'completed': summary['completed'],
        })
    return jsonify({'success': True, 'winners': winners})


def _rng(data: dict) -> random.Random:
    seed = data.get('seed')
    return random.Random(seed) if seed is not None else random.Random()


@app.route('/api/admin/generate-bracket', methods=['POST'])
@admin_required
def api_admin_generate_bracket():
    """Generate a 32-saint bracket from 4 categories."""
    data = _json_body()
    year = data.get('year')
    categories = data.get('categories')
    if not year or not categories:
        return jsonify({'success': False, 'error': 'Year and categories are required'}), 400
    try:
        year = int(year)
    except (TypeError, ValueError):
        return jsonify({'success': False, 'error': 'Year must be a number'}), 400
    if not isinstance(categories, list) or any(c not in CATEGORY_FIELDS for c in categories):
        return jsonify({'success': False, 'error': 'Unknown category in request'}), 400

    with _data_lock():
        saints = list(load_collection('saints').values())
        bracket = generate_bracket(saints, year, categories, rng=_rng(data), title=data.get('title'))
        brackets = load_collection('brackets')
        brackets[bracket['id']] = bracket
        save_collection('brackets', brackets)
    app.logger.info(f'Bracket {bracket["id"]} generated for {year} with categories {", ".join(categories)}')
    return jsonify({
        'success': True,
        'bracket': bracket,
        'bracket_id': bracket['id'],
        'message': f'Bracket generated with {bracket["size"]} saints',
    })


@app.route('/api/admin/brackets/<bracket_id>')
@admin_required
def api_admin_bracket(bracket_id):
    bracket = _get_bracket(bracket_id)
    return jsonify({
        'success': True,
        'bracket': bracket,
        'summary': bracket_summary(bracket),
        'dimensions': bracket_dimensions(bracket),
    })


@app.route('/api/admin/brackets/<bracket_id>/edit', methods=['POST'])
@admin_required
def api_admin_edit_bracket(bracket_id):
    """Swap a saint, swap a category or redraw a category before voting starts."""
    data = _json_body()
    if not data.get('type'):
        return jsonify({'success': False, 'error': 'Edit type is required'}), 400
    with _data_lock():
        brackets = load_collection('brackets')
        bracket = brackets.get(bracket_id)
        if bracket is None:
            return jsonify({'success': False, 'error': 'Bracket not found'}), 404
        saints = list(load_collection('saints').values())
        apply_edit(bracket, data, saints, rng=_rng(data))
        bracket['updated_at'] = now_utc().isoformat()
        save_collection('brackets', brackets)
    app.logger.info(f'Bracket {bracket_id} edited: {data.get("type")}')
    return jsonify({'success': True, 'bracket': bracket})


@app.route('/api/admin/brackets/<bracket_id>/result', methods=['POST'])
@admin_required
def api_admin_record_result(bracket_id):
    """Record a matchup result and advance the winner."""
    data = _json_body()
    match_id = data.get('match_id')
    winner_id = data.get('winner_id')
    if not match_id or not winner_id:
        return jsonify({'success': False, 'error': 'match_id and winner_id are required'}), 400
    with _data_lock():
        brackets = load_collection('brackets')
        bracket = brackets.get(bracket_id)
        if bracket is None:
            return jsonify({'success': False, 'error': 'Bracket not found'}), 404
        match = record_match_result(bracket, match_id, winner_id,
                                    data.get('votes_for_saint1'), data.get('votes_for_saint2'))
        save_collection('brackets', brackets)
    return jsonify({'success': True, 'match': match, 'summary': bracket_summary(bracket)})


@app.route('/api/admin/brackets/<bracket_id>', methods=['DELETE'])
@admin_required
def api_admin_delete_bracket(bracket_id):
    with _data_lock():
        brackets = load_collection('brackets')
        if brackets.pop(bracket_id, None) is None:
            return jsonify({'success': False, 'error': 'Bracket not found'}), 404
        save_collection('brackets', brackets)
    app.logger.info(f'Bracket {bracket_id} deleted by {_current_admin()}')
    return jsonify({'success': True, 'message': 'Bracket deleted successfully'})


@app.route('/api/bracket/layout/<bracket_id>')
def api_bracket_layout(bracket_id):
    bracket = _get_bracket(bracket_id)
    return jsonify({
        'success': True,
        'dimensions': bracket_dimensions(bracket),
        'layout': calculate_tournament_layout(bracket),
    })


@app.route('/api/bracket/publish', methods=['POST'])
@admin_required
def api_publish_bracket():
    """Publish a bracket snapshot and archive the full bracket."""
    data = _json_body()
    bracket_id = data.get('bracket_id')
    if not bracket_id:
        return jsonify({'success': False, 'error': 'bracket_id is required'}), 400
    published_by = data.get('published_by') or _current_admin()
    with _data_lock():
        bracket = _get_bracket(bracket_id)
        published = load_collection('published_brackets')
        archives = load_collection('archives')
        snapshot, archive = publish_bracket(bracket, published, archives, published_by, now_utc())
        saints = load_collection('saints')
        mark_saints_used(saints, bracket)
        save_collection('archives', archives)
        save_collection('published_brackets', published)
        save_collection('saints', saints)
    app.logger.info(f'Bracket {bracket_id} published as {snapshot["id"]} by {published_by}')
    return jsonify({
        'success': True,
        'published_bracket_id': snapshot['id'],
        'archive_id': archive['id'],
        'message': 'Tournament published successfully',
    })


@app.route('/api/admin/archives/<archive_id>')
@admin_required
def api_admin_archive(archive_id):
    archive = get_archive(load_collection('archives'), archive_id)
    return jsonify({'success': True, 'archive': archive})


# PDF

@app.route('/api/bracket/pdf', methods=['GET'])
def api_bracket_pdf_status():
    """Report the download URL of an already generated PDF, if any."""
    bracket_id = request.args.get('bracket_id')
    if not bracket_id:
        return jsonify({'success': False, 'error': 'Bracket ID is required'}), 400
    bracket = _get_bracket(bracket_id)
    return jsonify({'success': True, 'download_url': bracket.get('download_url')})


@app.route('/api/bracket/pdf', methods=['POST'])
def api_bracket_pdf():
    """Generate the printable PDF of a bracket and return it."""
    bracket_id = _json_body().get('bracket_id')
    if not bracket_id:
        return jsonify({'success': False, 'error': 'Bracket ID is required'}), 400
    with _data_lock():
        brackets = load_collection('brackets')
        bracket = brackets.get(bracket_id)
        if bracket is None:
            return jsonify({'success': False, 'error': 'Bracket not found'}), 404
        relative_path = save_bracket_pdf(bracket, DATA_DIR)
        bracket['download_url'] = f'/api/bracket/pdf/{bracket_id}/download'
        save_collection('brackets', brackets)
    app.logger.info(f'PDF generated for bracket {bracket_id}: {relative_path}')
    return send_file(
        os.path.join(DATA_DIR, relative_path),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=pdf_filename(bracket),
    )


@app.route('/api/bracket/pdf/<bracket_id>/download')
def api_bracket_pdf_download(bracket_id):
    bracket = _get_bracket(bracket_id)
    path = os.path.join(DATA_DIR, pdf_relative_path(bracket))
    if not bracket.get('download_url') or not os.path.exists(path):
        return jsonify({'success': False, 'error': 'PDF has not been generated'}), 404
    return send_file(path, mimetype='application/pdf', as_attachment=True,
                     download_name=pdf_filename(bracket))


# Posts

def _page_args():
    try:
        limit = int(request.args.get('limit', DEFAULT_PAGE_SIZE))
    except ValueError:
        raise SaintfestError('limit must be a number')
    return max(1, limit), request.args.get('last_id')


@app.route('/api/posts')
def api_posts():
    """Published posts, most recently updated first."""
    limit, last_id = _page_args()
    posts = list(load_collection('posts').values())
    page, has_more = list_posts(posts, status='published', limit=limit, last_id=last_id)
    return jsonify({'success': True, 'posts': page, 'has_more': has_more})


@app.route('/api/posts/<post_id>')
def api_post(post_id):
    post = load_collection('posts').get(post_id)
    if post is None or post.get('status') != 'published':
        return jsonify({'success': False, 'error': 'Post not found'}), 404
    return jsonify({'success': True, 'post': post})


@app.route('/api/posts/slug/<slug>')
def api_post_by_slug(slug):
    post = find_post_by_slug(load_collection('posts'), slug)
    if post is None or post.get('status') != 'published':
        return jsonify({'success': False, 'error': 'Post not found'}), 404
    return jsonify({'success': True, 'post': post})


@app.route('/api/posts/<slug>/comments', methods=['GET'])
def api_post_comments(slug):
    comments = approved_comments(list(load_collection('comments').values()), slug)
    return jsonify({'success': True, 'comments': comments, 'count': len(comments)})


@app.route('/api/posts/<slug>/comments', methods=['POST'])
def api_submit_comment(slug):
    """Submit a comment; it stays hidden until approved."""
    post = find_post_by_slug(load_collection('posts'), slug)
    if post is None or post.get('status') != 'published':
        return jsonify({'success': False, 'error': 'Post not found'}), 404
    comment = build_comment(slug, _json_body(), now_utc())
    with _data_lock():
        comments = load_collection('comments')
        comments[comment['id']] = comment
        save_collection('comments', comments)
    return jsonify({'success': True, 'comment': comment,
                    'message': 'Comment submitted and awaiting moderation'}), 201


@app.route('/api/admin/posts', methods=['GET'])
@admin_required
def api_admin_posts():
    limit, last_id = _page_args()
    status = request.args.get('status')
    slug = request.args.get('slug')
    posts = list(load_collection('posts').values())
    page, has_more = list_posts(posts, slug=slug, status=status, limit=limit, last_id=last_id)
    return jsonify({'success': True, 'posts': page, 'has_more': has_more})


@app.route('/api/admin/posts', methods=['POST'])
@admin_required
def api_admin_create_post():
    data = _json_body()
    with _data_lock():
        posts = load_collection('posts')
        post = build_post(data, posts, now_utc(), author=_current_admin())
        posts[post['id']] = post
        save_collection('posts', posts)
    app.logger.info(f'Post {post["id"]} created ({post["status"]}): {post["title"]}')
    return jsonify({'success': True, 'post': post})


@app.route('/api/admin/posts/bulk', methods=['POST'])
@admin_required
def api_admin_bulk_posts():
    data = _json_body()
    action = data.get('action')
    with _data_lock():
        posts = load_collection('posts')
        results = bulk_update(posts, action, data.get('post_ids'), data.get('data'), now_utc())
        save_collection('posts', posts)
    app.logger.info(f'Bulk {action} applied to {len(results)} posts')
    return jsonify({'success': True, 'action': action, 'results': results, 'processed_count': len(results)})


@app.route('/api/admin/posts/publish-scheduled', methods=['POST'])
@admin_required
def api_admin_publish_scheduled():
    with _data_lock():
        posts = load_collection('posts')
        published = publish_scheduled(posts, now_utc())
        if published:
            save_collection('posts', posts)
    if published:
        app.logger.info(f'Published {len(published)} scheduled posts')
    return jsonify({'success': True, 'published_count': len(published), 'published_posts': published})


@app.route('/api/admin/posts/stats')
@admin_required
def api_admin_post_stats():
    stats = post_stats(list(load_collection('posts').values()), now_utc())
    return jsonify({'success': True, 'stats': stats})


@app.route('/api/admin/posts/<post_id>', methods=['GET'])
@admin_required
def api_admin_post(post_id):
    post = load_collection('posts').get(post_id)
    if post is None:
        return jsonify({'success': False, 'error': 'Post not found'}), 404
    return jsonify({'success': True, 'post': post})


@app.route('/api/admin/posts/<post_id>', methods=['PUT'])
@admin_required
def api_admin_update_post(post_id):
    data = _json_body()
    with _data_lock():
        posts = load_collection('posts')
        post = posts.get(post_id)
        if post is None:
            return jsonify({'success': False, 'error': 'Post not found'}), 404
        apply_update(post, data, posts, now_utc())
        save_collection('posts', posts)
    return jsonify({'success': True, 'post': post})


@app.route('/api/admin/posts/<post_id>', methods=['DELETE'])
@admin_required
def api_admin_delete_post(post_id):
    with _data_lock():
        posts = load_collection('posts')
        if posts.pop(post_id, None) is None:
            return jsonify({'success': False, 'error': 'Post not found'}), 404
        save_collection('posts', posts)
    app.logger.info(f'Post {post_id} deleted by {_current_admin()}')
    return jsonify({'success': True, 'message': 'Post deleted successfully'})


@app.route('/api/admin/comments')
@admin_required
def api_admin_comments():
    status = request.args.get('status', 'pending')
    comments = [c for c in load_collection('comments').values() if c.get('status') == status]
    comments.sort(key=lambda c: c.get('timestamp') or '')
    return jsonify({'success': True, 'comments': comments, 'count': len(comments)})


@app.route('/api/admin/comments/<comment_id>/moderate', methods=['POST'])
@admin_required
def api_admin_moderate_comment(comment_id):
    action = _json_body().get('action')
    with _data_lock():
        comments = load_collection('comments')
        comment = moderate_comment(comments, comment_id, action, now_utc())
        save_collection('comments', comments)
        posts = load_collection('posts')
        post = find_post_by_slug(posts, comment['post_slug'])
        if post is not None:
            post['comments'] = len(approved_comments(list(comments.values()), comment['post_slug']))
            save_collection('posts', posts)
    return jsonify({'success': True, 'comment': comment})


# Voting

@app.route('/api/voting-sessions', methods=['GET'])
def api_get_voting_session():
    post_id = request.args.get('post_id')
    if not post_id:
        return jsonify({'success': False, 'error': 'Post ID is required'}), 400
    voting_session = find_session_for_post(load_collection('voting_sessions'), post_id)
    if voting_session is None:
        return jsonify({'success': False, 'error': 'Voting session not found'}), 404
    return jsonify({'success': True, 'data': voting_session})


@app.route('/api/voting-sessions', methods=['POST'])
def api_create_voting_session():
    """Open voting on a matchup post until the next midnight."""
    post_id = _json_body().get('post_id')
    if not post_id:
        return jsonify({'success': False, 'error': 'Post ID is required'}), 400
    with _data_lock():
        post = load_collection('posts').get(post_id)
        if post is None:
            return jsonify({'success': False, 'error': 'Post not found'}), 404
        sessions = load_collection('voting_sessions')
        existing = find_session_for_post(sessions, post_id)
        if existing is not None:
            return jsonify({'success': True, 'data': existing, 'message': 'Voting session already exists'})
        voting_session = build_session(post_id, post.get('matchup'), now_utc(), get_timezone(VOTING_TIMEZONE))
        sessions[voting_session['id']] = voting_session
        save_collection('voting_sessions', sessions)
    app.logger.info(f'Voting session {voting_session["id"]} opened, closes {voting_session["closes_at"]}')
    return jsonify({'success': True, 'data': voting_session, 'message': 'Voting session created successfully'})


def _voter_hash() -> str:
    ip = client_ip(request.headers, request.remote_addr)
    return create_voter_hash(ip, request.headers.get('User-Agent') or 'unknown')


@app.route('/api/votes', methods=['POST'])
def api_cast_vote():
    """Cast one vote per visitor in a voting session."""
    data = _json_body()
    session_id = data.get('session_id')
    saint_id = data.get('saint_id')
    if not session_id or not saint_id:
        return jsonify({'success': False, 'error': 'Session ID and Saint ID are required'}), 400
    voter_hash = _voter_hash()
    now = now_utc()
    with _data_lock():
        sessions = load_collection('voting_sessions')
        voting_session = sessions.get(session_id)
        if voting_session is None:
            return jsonify({'success': False, 'error': 'Voting session not found'}), 404
        votes = load_collection('votes')
        validate_vote(voting_session, list(votes.values()), saint_id, voter_hash, now)
        vote = build_vote(voting_session, saint_id, voter_hash, now)
        votes[vote['id']] = vote
        results = tally(voting_session, list(votes.values()))
        voting_session['total_votes'] = results.pop('total_votes')
        voting_session['results'] = results
        voting_session['updated_at'] = now.isoformat()
        save_collection('votes', votes)
        save_collection('voting_sessions', sessions)
    return jsonify({
        'success': True,
        'message': 'Vote recorded successfully',
        'data': {'vote_id': vote['id'], 'total_votes': voting_session['total_votes'], 'has_voted': True},
    })


@app.route('/api/votes', methods=['GET'])
def api_get_votes():
    session_id = request.args.get('session_id')
    if not session_id:
        return jsonify({'success': False, 'error': 'Session ID is required'}), 400
    voting_session = load_collection('voting_sessions').get(session_id)
    if voting_session is None:
        return jsonify({'success': False, 'error': 'Voting session not found'}), 404
    votes = session_votes(list(load_collection('votes').values()), session_id)
    voter_hash = _voter_hash()
    return jsonify({
        'success': True,
        'data': {
            'votes': [{k: v for k, v in vote.items() if k != 'voter_hash'} for vote in votes],
            'total_votes': len(votes),
            'results': tally(voting_session, votes),
            'has_voted': any(v.get('voter_hash') == voter_hash for v in votes),
            'session': voting_session,
        },
    })


@app.route('/api/admin/voting-sessions/<session_id>/close', methods=['POST'])
@admin_required
def api_admin_close_voting_session(session_id):
    """Close a session and carry the winner into the bracket."""
    winner_id = _json_body().get('winner_id')
    with _data_lock():
        sessions = load_collection('voting_sessions')
        voting_session = sessions.get(session_id)
        if voting_session is None:
            return jsonify({'success': False, 'error': 'Voting session not found'}), 404
        brackets = load_collection('brackets')
        bracket_id = voting_session.get('bracket_id')
        bracket = brackets.get(bracket_id) if bracket_id else None
        votes = list(load_collection('votes').values())
        close_session(voting_session, votes, now_utc(), bracket=bracket, winner_id=winner_id)
        save_collection('voting_sessions', sessions)
        if bracket is not None:
            save_collection('brackets', brackets)
    app.logger.info(f'Voting session {session_id} closed, winner {voting_session["results"]["winner_id"] or "tie"}')
    response = {'success': True, 'data': voting_session,
                'bracket_updated': bracket is not None and bool(voting_session.get('match_id'))}
    if bracket_id and bracket is None:
        app.logger.warning(f'Voting session {session_id} references missing bracket {bracket_id}; '
                           f'result not recorded')
        response['warning'] = f'Bracket {bracket_id} not found; the result was not recorded in a bracket'
    return jsonify(response)


# Backup and restore

@app.route('/api/admin/export')
@admin_required
def api_admin_export():
    """Export entire DATA_DIR as a downloadable ZIP file (admin backup)."""
    if not os.path.exists(DATA_DIR):
        app.logger.error(f'Admin export failed: DATA_DIR does not exist: {DATA_DIR}')
        return jsonify({'success': False, 'error': 'Data directory does not exist'}), 404

    app.logger.info(f'Admin export starting: DATA_DIR={DATA_DIR}')

    buffer = io.BytesIO()
    with _data_lock(), zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zf:
        file_count = 0
        skipped_count = 0
        for root, dirs, files in os.walk(DATA_DIR):
            dirs[:] = [d for d in dirs if d not in SITE_EXPORT_SKIP_DIRS]

            for file in files:
                if file in SITE_EXPORT_SKIP_FILES or any(file.endswith(ext) for ext in SITE_EXPORT_SKIP_EXTS):
                    skipped_count += 1
                    continue

                file_path = os.path.join(root, file)
                arcname = os.path.relpath(file_path, DATA_DIR)
                zf.write(file_path, arcname)
                file_count += 1

        app.logger.info(f'Admin export: added {file_count} files to ZIP, skipped {skipped_count} files')

    buffer.seek(0)
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    return send_file(
        buffer,
        mimetype='application/zip',
        as_attachment=True,
        download_name=f'saintfest-backup-{timestamp}.zip',
    )


@app.route('/api/admin/import', methods=['POST'])
@admin_required
def api_admin_import():
    """Import entire DATA_DIR from an uploaded ZIP file (admin restore)."""
    file = request.files.get('file')
    if not file or file.filename == '':
        return jsonify({'success': False, 'error': 'No file uploaded'}), 400

    file_bytes = file.read()
    if len(file_bytes) > MAX_SITE_UPLOAD_SIZE:
        return jsonify({'success': False, 'error': f'File too large (max {MAX_SITE_UPLOAD_SIZE} bytes)'}), 400

    if not zipfile.is_zipfile(io.BytesIO(file_bytes)):
        return jsonify({'success': False, 'error': 'Uploaded file is not a valid ZIP archive'}), 400

    with zipfile.ZipFile(io.BytesIO(file_bytes), 'r') as zf:
        names = set(zf.namelist())

        for name in names:
            if '..' in name or name.startswith('/') or name.startswith('\\'):
                return jsonify({'success': False, 'error': 'ZIP contains unsafe file paths. Import aborted.'}), 400

        if 'saints.yaml' not in names and 'brackets.yaml' not in names:
            return jsonify({
                'success': False,
                'error': 'ZIP does not appear to be a valid backup (missing saints.yaml or brackets.yaml)',
            }), 400

        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        backup_location = os.path.join(BASE_DIR, 'backups', f'pre-restore-{timestamp}')
        os.makedirs(backup_location, exist_ok=True)
        app.logger.info(f'Pre-restore backup will be saved to: {backup_location}')

        with _data_lock():
            if os.path.exists(DATA_DIR):
                for item in os.listdir(DATA_DIR):
                    src = os.path.join(DATA_DIR, item)
                    dst = os.path.join(backup_location, item)
                    if os.path.isdir(src):
                        shutil.copytree(src, dst, ignore=shutil.ignore_patterns('.lock', '__pycache__'))
                    elif not item.endswith(('.lock', '.pyc')):
                        shutil.copy2(src, dst)

            os.makedirs(DATA_DIR, exist_ok=True)
            for name in names:
                if name.endswith('/') or name.endswith(('.lock', '.pyc')) or '__pycache__' in name:
                    continue

                dest_path = os.path.join(DATA_DIR, name)
                os.makedirs(os.path.dirname(dest_path), exist_ok=True)

                with zf.open(name) as src, open(dest_path, 'wb') as dst:
                    dst.write(src.read())

    app.logger.info(f'Admin import restored {len(names)} entries into {DATA_DIR}')
    return jsonify({
        'success': True,
        'backup_location': backup_location,
        'message': f'Data restored successfully. Previous data backed up to {backup_location}'
    }), 200


if __name__ == '__main__':
    app.run(debug=True, port=5000)
