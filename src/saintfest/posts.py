"""
Daily matchup posts, blog management and reader comments.
"""
import math
import re
import uuid
from collections import Counter
from datetime import datetime
from typing import List, Dict, Optional, Tuple

from saintfest.errors import Conflict, NotFound, SaintfestError
from saintfest.models import parse_timestamp

POST_STATUSES = ['draft', 'published', 'scheduled', 'archived']
PRIORITIES = ['low', 'medium', 'high']
WORDS_PER_MINUTE = 200
EXCERPT_LENGTH = 150
SEO_DESCRIPTION_LENGTH = 160
DEFAULT_PAGE_SIZE = 10
MAX_COMMENT_LENGTH = 2000

EDITABLE_FIELDS = [
    'title', 'slug', 'content', 'excerpt', 'status', 'tags', 'categories',
    'featured', 'priority', 'seo_title', 'seo_description', 'featured_image',
    'scheduled_for', 'matchup', 'bracket_round', 'day_number',
]

IMAGE_PATTERN = re.compile(r'!\[.*?\]\((.*?)\)')


def slugify(title: str) -> str:
    slug = re.sub(r'[^a-z0-9 -]', '', title.lower())
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


def extract_images(content: str) -> List[str]:
    """URLs of markdown images in the post body."""
    return [url for url in IMAGE_PATTERN.findall(content or '') if url]


def make_excerpt(content: str, length: int = EXCERPT_LENGTH) -> str:
    content = content or ''
    return content[:length] + ('...' if len(content) > length else '')


def post_metadata(content: str) -> Dict:
    word_count = len((content or '').split())
    return {
        'word_count': word_count,
        'read_time': max(1, math.ceil(word_count / WORDS_PER_MINUTE)),
        'images': extract_images(content),
    }


def _normalize_matchup(matchup) -> Optional[Dict]:
    if not matchup:
        return None
    if not isinstance(matchup, dict):
        raise SaintfestError('Matchup must be an object')
    return {
        'saint1_id': matchup.get('saint1_id') or '',
        'saint2_id': matchup.get('saint2_id') or '',
        'bracket_id': matchup.get('bracket_id'),
        'match_id': matchup.get('match_id'),
    }


def _as_list(value) -> List:
    return list(value) if isinstance(value, (list, tuple)) else []


def _check_choice(value: str, choices: List[str], label: str):
    if value not in choices:
        raise SaintfestError(f'Invalid {label}: {value}. Must be one of {", ".join(choices)}')


def _check_scheduled_for(value):
    if not value:
        return None
    try:
        return parse_timestamp(value).isoformat()
    except ValueError:
        raise SaintfestError(f'Invalid scheduled_for timestamp: {value}')


def slug_taken(posts: Dict[str, Dict], slug: str, ignore_id: Optional[str] = None) -> bool:
    return any(p.get('slug') == slug and pid != ignore_id for pid, p in posts.items())


def build_post(data: Dict, posts: Dict[str, Dict], now: datetime, author: str = 'admin') -> Dict:
    """
    Create a new post record from admin input.

    Title and content are required. A missing slug is derived from the
    title; slugs must be unique. Word count, read time, images, excerpt and
    SEO fields are filled in from the content.
    """
    title = (data.get('title') or '').strip()
    content = data.get('content') or ''
    if not title or not content.strip():
        raise SaintfestError('Title and content are required')

    status = data.get('status') or 'draft'
    _check_choice(status, POST_STATUSES, 'status')
    priority = data.get('priority') or 'medium'
    _check_choice(priority, PRIORITIES, 'priority')

    slug = slugify(data.get('slug') or title)
    if not slug:
        raise SaintfestError('Could not derive a slug from the title')
    if slug_taken(posts, slug):
        raise Conflict('A post with this slug already exists')

    excerpt = data.get('excerpt') or make_excerpt(content)
    timestamp = now.isoformat()
    post = {
        'id': uuid.uuid4().hex,
        'title': title,
        'slug': slug,
        'content': content,
        'excerpt': excerpt,
        'status': status,
        'tags': _as_list(data.get('tags')),
        'categories': _as_list(data.get('categories')),
        'author': author,
        'featured': bool(data.get('featured', False)),
        'priority': priority,
        'seo_title': data.get('seo_title') or title,
        'seo_description': data.get('seo_description') or (data.get('excerpt') or content[:SEO_DESCRIPTION_LENGTH]),
        'featured_image': data.get('featured_image'),
        'views': 0,
        'likes': 0,
        'comments': 0,
        'created_at': timestamp,
        'updated_at': timestamp,
        'published_at': timestamp if status == 'published' else None,
        'scheduled_for': _check_scheduled_for(data.get('scheduled_for')),
        'matchup': _normalize_matchup(data.get('matchup')),
        'bracket_round': data.get('bracket_round'),
        'day_number': data.get('day_number'),
    }
    post.update(post_metadata(content))
    return post


def apply_update(post: Dict, data: Dict, posts: Dict[str, Dict], now: datetime) -> Dict:
    """Apply an admin edit to a post in place and return it."""
    previous_status = post.get('status')
    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == 'title':
            value = (value or '').strip()
            if not value:
                raise SaintfestError('Title cannot be empty')
        elif field == 'slug':
            value = slugify(value or post.get('title', ''))
            if not value:
                raise SaintfestError('Could not derive a slug from the title')
            if slug_taken(posts, value, ignore_id=post['id']):
                raise Conflict('A post with this slug already exists')
        elif field == 'content':
            if not isinstance(value, str) or not value.strip():
                raise SaintfestError('Content cannot be empty')
        elif field == 'status':
            _check_choice(value, POST_STATUSES, 'status')
        elif field == 'priority':
            _check_choice(value, PRIORITIES, 'priority')
        elif field in ('tags', 'categories'):
            value = _as_list(value)
        elif field == 'featured':
            value = bool(value)
        elif field == 'scheduled_for':
            value = _check_scheduled_for(value)
        elif field == 'matchup':
            value = _normalize_matchup(value)
        post[field] = value

    if 'content' in data:
        post.update(post_metadata(post['content']))
        if 'excerpt' not in data:
            post['excerpt'] = make_excerpt(post['content'])

    timestamp = now.isoformat()
    if post.get('status') == 'published' and previous_status != 'published':
        post['published_at'] = timestamp
    post['updated_at'] = timestamp
    return post


def bulk_update(posts: Dict[str, Dict], action: str, post_ids: List[str],
                data: Optional[Dict], now: datetime) -> List[Dict]:
    """
    Apply one action to many posts in place.

    Returns a list of {'id', 'action'} results. Unknown ids are skipped.
    """
    if not action or not isinstance(post_ids, list) or not post_ids:
        raise SaintfestError('Action and post IDs are required')
    data = data or {}
    timestamp = now.isoformat()
    results = []

    if action == 'updateStatus':
        status = data.get('status')
        if not status:
            raise SaintfestError('Status is required for update operation')
        _check_choice(status, POST_STATUSES, 'status')
        for post_id in post_ids:
            if post_id in posts:
                posts[post_id]['status'] = status
                posts[post_id]['updated_at'] = timestamp
                if status == 'published':
                    posts[post_id]['published_at'] = timestamp
                results.append({'id': post_id, 'action': 'updated'})
    elif action == 'delete':
        for post_id in post_ids:
            if posts.pop(post_id, None) is not None:
                results.append({'id': post_id, 'action': 'deleted'})
    elif action == 'updatePriority':
        priority = data.get('priority')
        if not priority:
            raise SaintfestError('Priority is required for priority update operation')
        _check_choice(priority, PRIORITIES, 'priority')
        for post_id in post_ids:
            if post_id in posts:
                posts[post_id]['priority'] = priority
                posts[post_id]['updated_at'] = timestamp
                results.append({'id': post_id, 'action': 'priority_updated'})
    elif action == 'toggleFeatured':
        for post_id in post_ids:
            if post_id in posts:
                posts[post_id]['featured'] = not posts[post_id].get('featured', False)
                posts[post_id]['updated_at'] = timestamp
                results.append({'id': post_id, 'action': 'featured_toggled'})
    elif action == 'updateCategories':
        categories = data.get('categories')
        if not isinstance(categories, list):
            raise SaintfestError('Categories array is required for category update operation')
        for post_id in post_ids:
            if post_id in posts:
                posts[post_id]['categories'] = list(categories)
                posts[post_id]['updated_at'] = timestamp
                results.append({'id': post_id, 'action': 'categories_updated'})
    else:
        raise SaintfestError('Unsupported action')
    return results


def due_scheduled_posts(posts: Dict[str, Dict], now: datetime) -> List[Dict]:
    """Scheduled posts whose publication time has come."""
    due = []
    for post in posts.values():
        if post.get('status') != 'scheduled':
            continue
        scheduled_for = parse_timestamp(post.get('scheduled_for'))
        if scheduled_for is not None and scheduled_for <= now:
            due.append(post)
    return due


def publish_scheduled(posts: Dict[str, Dict], now: datetime) -> List[Dict]:
    timestamp = now.isoformat()
    published = []
    for post in due_scheduled_posts(posts, now):
        post['status'] = 'published'
        post['published_at'] = timestamp
        post['updated_at'] = timestamp
        published.append({
            'id': post['id'],
            'title': post['title'],
            'scheduled_for': post['scheduled_for'],
            'published_at': timestamp,
        })
    return published


def _updated_key(post: Dict):
    stamp = parse_timestamp(post.get('updated_at') or post.get('created_at'))
    return stamp.timestamp() if stamp else 0


def list_posts(posts: List[Dict], slug: Optional[str] = None, status: Optional[str] = None,
               limit: int = DEFAULT_PAGE_SIZE, last_id: Optional[str] = None) -> Tuple[List[Dict], bool]:
    """
    Newest-updated-first page of posts.

    Returns (page, has_more). ``last_id`` continues after that post.
    """
    if slug:
        return [p for p in posts if p.get('slug') == slug][:1], False

    selected = [p for p in posts if not status or p.get('status') == status]
    selected.sort(key=_updated_key, reverse=True)
    if last_id:
        ids = [p['id'] for p in selected]
        if last_id in ids:
            selected = selected[ids.index(last_id) + 1:]
    page = selected[:limit]
    return page, len(selected) > limit


def post_stats(posts: List[Dict], now: datetime) -> Dict:
    """Dashboard figures for the blog."""
    total = len(posts)
    status_distribution = {status: 0 for status in POST_STATUSES}
    priority_distribution = {priority: 0 for priority in PRIORITIES}
    tag_counts = Counter()
    category_counts = Counter()
    for post in posts:
        if post.get('status') in status_distribution:
            status_distribution[post['status']] += 1
        if post.get('priority') in priority_distribution:
            priority_distribution[post['priority']] += 1
        tag_counts.update(post.get('tags') or [])
        category_counts.update(post.get('categories') or [])

    recent = sorted(posts, key=_updated_key, reverse=True)[:10]

    monthly_trends = []
    for offset in range(11, -1, -1):
        month_index = now.year * 12 + (now.month - 1) - offset
        year, month = divmod(month_index, 12)
        month_posts = 0
        for post in posts:
            created = parse_timestamp(post.get('created_at'))
            if created and created.year == year and created.month == month + 1:
                month_posts += 1
        monthly_trends.append({
            'month': datetime(year, month + 1, 1).strftime('%b %Y'),
            'posts': month_posts,
        })

    return {
        'total_posts': total,
        'published_posts': status_distribution['published'],
        'draft_posts': status_distribution['draft'],
        'scheduled_posts': status_distribution['scheduled'],
        'archived_posts': status_distribution['archived'],
        'featured_posts': sum(1 for p in posts if p.get('featured')),
        'total_views': sum(p.get('views') or 0 for p in posts),
        'total_likes': sum(p.get('likes') or 0 for p in posts),
        'total_comments': sum(p.get('comments') or 0 for p in posts),
        'avg_words_per_post': round(sum(p.get('word_count') or 0 for p in posts) / total) if total else 0,
        'avg_read_time': round(sum(p.get('read_time') or 0 for p in posts) / total) if total else 0,
        'top_tags': [{'tag': t, 'count': c} for t, c in tag_counts.most_common(10)],
        'top_categories': [{'category': k, 'count': c} for k, c in category_counts.most_common(10)],
        'recent_activity': [{
            'id': p.get('id'),
            'title': p.get('title'),
            'status': p.get('status'),
            'updated_at': p.get('updated_at'),
            'author': p.get('author'),
        } for p in recent],
        'priority_distribution': priority_distribution,
        'status_distribution': status_distribution,
        'monthly_trends': monthly_trends,
    }


def find_post_by_slug(posts: Dict[str, Dict], slug: str) -> Optional[Dict]:
    for post in posts.values():
        if post.get('slug') == slug:
            return post
    return None


# Comments

def build_comment(post_slug: str, data: Dict, now: datetime) -> Dict:
    """A reader comment, held for moderation."""
    content = (data.get('content') or '').strip()
    if not content:
        raise SaintfestError('Comment cannot be empty')
    if len(content) > MAX_COMMENT_LENGTH:
        raise SaintfestError(f'Comment must be {MAX_COMMENT_LENGTH} characters or fewer')
    return {
        'id': uuid.uuid4().hex,
        'post_slug': post_slug,
        'content': content,
        'timestamp': now.isoformat(),
        'status': 'pending',
    }


def approved_comments(comments: List[Dict], post_slug: str) -> List[Dict]:
    selected = [c for c in comments if c.get('post_slug') == post_slug and c.get('status') == 'approved']
    return sorted(selected, key=lambda c: c.get('timestamp') or '')


def moderate_comment(comments: Dict[str, Dict], comment_id: str, action: str, now: datetime) -> Dict:
    comment = comments.get(comment_id)
    if comment is None:
        raise NotFound('Comment not found')
    if action == 'approve':
        comment['status'] = 'approved'
    elif action == 'reject':
        comment['status'] = 'rejected'
    else:
        raise SaintfestError('Action must be "approve" or "reject"')
    comment['moderated_at'] = now.isoformat()
    return comment
