"""
Tests for voting sessions, vote validation and closing.
"""
import pytest
import sys
import os
import random
from datetime import datetime, timedelta

import pytz

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from saintfest.bracket import find_match, generate_bracket
from saintfest.errors import Conflict, SaintfestError, VoteRejected
from saintfest.voting import (
    build_session,
    build_vote,
    client_ip,
    close_session,
    compute_closes_at,
    create_voter_hash,
    find_session_for_post,
    get_timezone,
    tally,
    validate_vote,
)

CHICAGO = get_timezone('America/Chicago')
NOON = pytz.utc.localize(datetime(2025, 1, 15, 18, 0))


@pytest.fixture
def session():
    matchup = {'saint1_id': 'agnes', 'saint2_id': 'lucy'}
    return build_session('post-1', matchup, NOON, CHICAGO)


def cast(session, votes, saint_id, voter, now=NOON):
    validate_vote(session, votes, saint_id, voter, now)
    vote = build_vote(session, saint_id, voter, now)
    votes.append(vote)
    return vote


class TestVoterIdentity:
    def test_hash_is_stable(self):
        assert create_voter_hash('1.2.3.4', 'Firefox') == create_voter_hash('1.2.3.4', 'Firefox')
        assert create_voter_hash('1.2.3.4', 'Firefox') != create_voter_hash('1.2.3.4', 'Chrome')
        assert len(create_voter_hash('1.2.3.4', 'Firefox')) == 64

    def test_client_ip_prefers_forwarded_for(self):
        headers = {'X-Forwarded-For': '9.9.9.9, 10.0.0.1', 'X-Real-IP': '8.8.8.8'}
        assert client_ip(headers, '127.0.0.1') == '9.9.9.9'

    def test_client_ip_fallbacks(self):
        assert client_ip({'X-Real-IP': '8.8.8.8'}, '127.0.0.1') == '8.8.8.8'
        assert client_ip({}, '127.0.0.1') == '127.0.0.1'
        assert client_ip({}) == 'unknown'


class TestClosesAt:
    """Sessions close at the next local midnight."""

    def test_midday(self):
        closes_at = compute_closes_at(NOON, CHICAGO)
        assert closes_at.astimezone(pytz.utc) == pytz.utc.localize(datetime(2025, 1, 16, 6, 0))

    def test_late_evening_local(self):
        """05:30 UTC is still the previous evening in Chicago."""
        now = pytz.utc.localize(datetime(2025, 1, 16, 5, 30))
        closes_at = compute_closes_at(now, CHICAGO)
        assert closes_at.astimezone(pytz.utc) == pytz.utc.localize(datetime(2025, 1, 16, 6, 0))

    def test_daylight_saving(self):
        now = pytz.utc.localize(datetime(2025, 7, 1, 12, 0))
        closes_at = compute_closes_at(now, CHICAGO)
        assert closes_at.astimezone(pytz.utc) == pytz.utc.localize(datetime(2025, 7, 2, 5, 0))


class TestBuildSession:
    def test_fields(self, session):
        assert session['id'] == 'post-1-session'
        assert session['post_id'] == 'post-1'
        assert session['is_active'] is True
        assert session['total_votes'] == 0
        assert session['results']['winner_id'] == ''

    def test_requires_matchup(self):
        with pytest.raises(SaintfestError, match='valid matchup'):
            build_session('post-2', None, NOON, CHICAGO)
        with pytest.raises(SaintfestError):
            build_session('post-2', {'saint1_id': 'agnes'}, NOON, CHICAGO)

    def test_find_session_for_post(self, session):
        sessions = {session['id']: session}
        assert find_session_for_post(sessions, 'post-1') is session
        assert find_session_for_post(sessions, 'post-9') is None


class TestValidateVote:
    """Tests for the vote acceptance rules."""

    def test_accepts_first_vote(self, session):
        votes = []
        vote = cast(session, votes, 'agnes', 'voter-a')
        assert vote['session_id'] == session['id']
        assert vote['id'].startswith('post-1-session-')

    def test_duplicate_vote(self, session):
        votes = []
        cast(session, votes, 'agnes', 'voter-a')
        with pytest.raises(Conflict, match='already voted'):
            cast(session, votes, 'lucy', 'voter-a')

    def test_duplicate_reported_before_closed(self, session):
        votes = []
        cast(session, votes, 'agnes', 'voter-a')
        later = NOON + timedelta(days=2)
        with pytest.raises(Conflict):
            validate_vote(session, votes, 'agnes', 'voter-a', later)

    def test_inactive_session(self, session):
        session['is_active'] = False
        with pytest.raises(VoteRejected, match='not active'):
            validate_vote(session, [], 'agnes', 'voter-a', NOON)

    def test_closed_session(self, session):
        later = NOON + timedelta(hours=12)
        with pytest.raises(VoteRejected, match='closed'):
            validate_vote(session, [], 'agnes', 'voter-a', later)

    def test_saint_not_in_matchup(self, session):
        with pytest.raises(SaintfestError, match='not part of this matchup'):
            validate_vote(session, [], 'cecilia', 'voter-a', NOON)

    def test_votes_in_other_sessions_ignored(self, session):
        votes = [{'session_id': 'other', 'voter_hash': 'voter-a', 'saint_id': 'agnes'}]
        validate_vote(session, votes, 'agnes', 'voter-a', NOON)


class TestTally:
    def test_counts_and_percentages(self, session):
        votes = []
        cast(session, votes, 'agnes', 'a')
        cast(session, votes, 'agnes', 'b')
        cast(session, votes, 'lucy', 'c')
        results = tally(session, votes)
        assert results['saint1_votes'] == 2
        assert results['saint2_votes'] == 1
        assert results['total_votes'] == 3
        assert results['saint1_percentage'] == 66.7
        assert results['saint2_percentage'] == 33.3
        assert results['winner_id'] == 'agnes'

    def test_tie_has_no_winner(self, session):
        votes = []
        cast(session, votes, 'agnes', 'a')
        cast(session, votes, 'lucy', 'b')
        assert tally(session, votes)['winner_id'] == ''

    def test_no_votes(self, session):
        results = tally(session, [])
        assert results['saint1_percentage'] == 0
        assert results['winner_id'] == ''


class TestCloseSession:
    """Tests for closing a session and advancing the bracket."""

    @pytest.fixture
    def bracket(self, sample_saints):
        return generate_bracket(sample_saints, 2025, ['martyrs', 'virgins', 'bishop', 'mystic'],
                                rng=random.Random(2))

    def test_close_without_bracket(self, session):
        votes = []
        cast(session, votes, 'lucy', 'a')
        close_session(session, votes, NOON)
        assert session['is_active'] is False
        assert session['total_votes'] == 1
        assert session['results']['winner_id'] == 'lucy'
        assert 'closed_at' in session

    def test_close_advances_bracket_winner(self, bracket):
        match = find_match(bracket, 'round1_match3')
        # Post lists the saints in the opposite order from the match
        matchup = {'saint1_id': match['saint2_id'], 'saint2_id': match['saint1_id'],
                   'bracket_id': bracket['id'], 'match_id': 'round1_match3'}
        session = build_session('post-3', matchup, NOON, CHICAGO)
        votes = []
        cast(session, votes, match['saint2_id'], 'a')
        cast(session, votes, match['saint2_id'], 'b')
        cast(session, votes, match['saint1_id'], 'c')
        close_session(session, votes, NOON, bracket=bracket)
        assert match['winner_id'] == match['saint2_id']
        assert match['votes_for_saint1'] == 1
        assert match['votes_for_saint2'] == 2
        assert find_match(bracket, 'round2_match2')['saint1_id'] == match['saint2_id']

    def test_tie_requires_winner(self, bracket):
        match = find_match(bracket, 'round1_match1')
        matchup = {'saint1_id': match['saint1_id'], 'saint2_id': match['saint2_id'],
                   'bracket_id': bracket['id'], 'match_id': 'round1_match1'}
        session = build_session('post-4', matchup, NOON, CHICAGO)
        with pytest.raises(SaintfestError, match='tie'):
            close_session(session, [], NOON, bracket=bracket)
        assert session['is_active'] is True
        close_session(session, [], NOON, bracket=bracket, winner_id=match['saint2_id'])
        assert match['winner_id'] == match['saint2_id']

    def test_winner_override_must_be_in_matchup(self, session):
        with pytest.raises(SaintfestError):
            close_session(session, [], NOON, winner_id='cecilia')
