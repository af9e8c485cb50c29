"""
Voting sessions and one-vote-per-visitor deduplication.

A session opens when a matchup post goes up and closes at the next
midnight in the tournament's time zone. Visitors are identified by a hash
of their IP address and user agent.
"""
import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Dict, Optional

import pytz

from saintfest.bracket import find_match, record_match_result
from saintfest.errors import Conflict, SaintfestError, VoteRejected
from saintfest.models import now_utc, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = 'America/Chicago'


def create_voter_hash(ip: str, user_agent: str) -> str:
    return hashlib.sha256(f'{ip}-{user_agent}'.encode('utf-8')).hexdigest()


def client_ip(headers, remote_addr: Optional[str] = None) -> str:
    """Best guess at the visitor's address behind a proxy."""
    forwarded = headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    real_ip = headers.get('X-Real-IP')
    if real_ip:
        return real_ip.strip()
    return remote_addr or 'unknown'


def get_timezone(name: Optional[str] = None):
    return pytz.timezone(name or DEFAULT_TIMEZONE)


def compute_closes_at(now: datetime, tz) -> datetime:
    """The first midnight after ``now`` in the voting time zone."""
    local = now.astimezone(tz)
    tomorrow = datetime(local.year, local.month, local.day) + timedelta(days=1)
    return tz.localize(tomorrow)


def build_session(post_id: str, matchup: Optional[Dict], now: datetime, tz) -> Dict:
    """Create the voting session for a matchup post."""
    if not matchup or not matchup.get('saint1_id') or not matchup.get('saint2_id'):
        raise SaintfestError('Post does not have a valid matchup')

    session_id = f'{post_id}-session'
    return {
        'id': session_id,
        'post_id': post_id,
        'poll_id': session_id,
        'saint1_id': matchup['saint1_id'],
        'saint2_id': matchup['saint2_id'],
        'bracket_id': matchup.get('bracket_id'),
        'match_id': matchup.get('match_id'),
        'opens_at': now.isoformat(),
        'closes_at': compute_closes_at(now, tz).isoformat(),
        'is_active': True,
        'total_votes': 0,
        'results': {
            'saint1_votes': 0,
            'saint2_votes': 0,
            'saint1_percentage': 0,
            'saint2_percentage': 0,
            'winner_id': '',
        },
    }


def find_session_for_post(sessions: Dict[str, Dict], post_id: str) -> Optional[Dict]:
    for session in sessions.values():
        if session.get('post_id') == post_id:
            return session
    return None


def session_votes(votes: List[Dict], session_id: str) -> List[Dict]:
    return [v for v in votes if v.get('session_id') == session_id]


def validate_vote(session: Dict, votes: List[Dict], saint_id: str, voter_hash: str, now: datetime):
    """
    Raise if this vote may not be counted.

    The duplicate check comes first so a repeat visitor always learns they
    already voted, even after the session closed.
    """
    for vote in session_votes(votes, session['id']):
        if vote.get('voter_hash') == voter_hash:
            raise Conflict('You have already voted in this matchup')
    if not session.get('is_active'):
        raise VoteRejected('Voting session is not active')
    closes_at = parse_timestamp(session.get('closes_at'))
    if closes_at is not None and now >= closes_at:
        raise VoteRejected('Voting session has closed')
    if saint_id not in (session.get('saint1_id'), session.get('saint2_id')):
        raise SaintfestError(f'Saint {saint_id} is not part of this matchup')


def build_vote(session: Dict, saint_id: str, voter_hash: str, now: datetime) -> Dict:
    vote_id = f'{session["id"]}-{int(now.timestamp() * 1000)}-{secrets.token_hex(5)[:9]}'
    return {
        'id': vote_id,
        'session_id': session['id'],
        'saint_id': saint_id,
        'voter_hash': voter_hash,
        'timestamp': now.isoformat(),
    }


def tally(session: Dict, votes: List[Dict]) -> Dict:
    """Count the votes of a session. The winner is '' on a tie."""
    counted = session_votes(votes, session['id'])
    saint1_votes = sum(1 for v in counted if v.get('saint_id') == session.get('saint1_id'))
    saint2_votes = sum(1 for v in counted if v.get('saint_id') == session.get('saint2_id'))
    total = saint1_votes + saint2_votes
    if total:
        saint1_percentage = round(saint1_votes * 100.0 / total, 1)
        saint2_percentage = round(saint2_votes * 100.0 / total, 1)
    else:
        saint1_percentage = saint2_percentage = 0

    if saint1_votes > saint2_votes:
        winner_id = session.get('saint1_id')
    elif saint2_votes > saint1_votes:
        winner_id = session.get('saint2_id')
    else:
        winner_id = ''

    return {
        'saint1_votes': saint1_votes,
        'saint2_votes': saint2_votes,
        'saint1_percentage': saint1_percentage,
        'saint2_percentage': saint2_percentage,
        'total_votes': total,
        'winner_id': winner_id,
    }


def close_session(session: Dict, votes: List[Dict], now: datetime,
                  bracket: Optional[Dict] = None, winner_id: Optional[str] = None) -> Dict:
    """
    Deactivate a session, store its final results and, when given the
    bracket the matchup belongs to, advance the winner in it.

    ``winner_id`` overrides the count and is required on a tie.
    """
    results = tally(session, votes)
    if winner_id:
        if winner_id not in (session.get('saint1_id'), session.get('saint2_id')):
            raise SaintfestError(f'Saint {winner_id} is not part of this matchup')
        results['winner_id'] = winner_id
    elif not results['winner_id'] and bracket is not None and session.get('match_id'):
        raise SaintfestError('Voting ended in a tie; a winner must be chosen')

    if bracket is not None and session.get('match_id'):
        match = find_match(bracket, session['match_id'])
        if match['saint1_id'] == session.get('saint1_id'):
            votes1, votes2 = results['saint1_votes'], results['saint2_votes']
        else:
            votes1, votes2 = results['saint2_votes'], results['saint1_votes']
        record_match_result(bracket, session['match_id'], results['winner_id'], votes1, votes2)
        logger.info(f'Recorded {session["match_id"]} winner {results["winner_id"]} from session {session["id"]}')

    session['is_active'] = False
    session['closed_at'] = now.isoformat()
    session['total_votes'] = results.pop('total_votes')
    session['results'] = results
    return session
