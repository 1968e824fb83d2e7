import pytest
from flask import g
from flask.testing import FlaskClient

from app import create_app
from errors import UpstreamFetchFailed
from models import db, User

AUTH_HEADER = 'X-Forwarded-User'


def make_event(slug='two-sum', title='Two Sum', timestamp=1700000000, lang='python', status='Accepted'):
    return {
        'title': title,
        'titleSlug': slug,
        'timestamp': str(timestamp),
        'statusDisplay': status,
        'lang': lang,
    }


class FakeLeetCodeClient:
    """In-memory stand-in for LeetCodeClient."""

    def __init__(self):
        self.submissions = []
        self.problems = {}
        self.stats = {'solvedProblem': 1, 'easySolved': 1, 'mediumSolved': 0, 'hardSolved': 0}
        self.fail_submissions = False
        self.fail_stats = False
        self.fail_problems = False
        self.problem_calls = []

    def fetch_accepted_submissions(self, username, limit=20):
        if self.fail_submissions:
            raise UpstreamFetchFailed(details='Failed to connect to LeetCode: timed out')
        return list(self.submissions)[:limit]

    def fetch_solved_stats(self, username):
        if self.fail_stats:
            raise UpstreamFetchFailed(details='stats unavailable')
        return dict(self.stats)

    def fetch_problem(self, title_slug):
        self.problem_calls.append(title_slug)
        if self.fail_problems or title_slug not in self.problems:
            raise UpstreamFetchFailed(details=f'No metadata found for {title_slug}')
        return dict(self.problems[title_slug])


@pytest.fixture
def leetcode():
    fake = FakeLeetCodeClient()
    fake.problems['two-sum'] = {
        'title': 'Two Sum',
        'difficulty': 'Easy',
        'question_number': 1,
        'topic_tags': [{'name': 'Array', 'slug': 'array'}, {'name': 'Hash Table', 'slug': 'hash-table'}],
        'link': 'https://leetcode.com/problems/two-sum/',
    }
    return fake


class FreshLoginClient(FlaskClient):
    """Requests share the fixture app context, so drop the cached login each time."""

    def open(self, *args, **kwargs):
        g.pop('_login_user', None)
        return super().open(*args, **kwargs)


@pytest.fixture
def app(leetcode):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'AUTH_SUBJECT_HEADER': AUTH_HEADER,
    }, leetcode_client=leetcode)
    app.test_client_class = FreshLoginClient
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def alice(app):
    user = User(auth_id='user_alice', leetcode_username='alice')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def bob(app):
    user = User(auth_id='user_bob', leetcode_username='bob')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def alice_headers():
    return {AUTH_HEADER: 'user_alice'}


@pytest.fixture
def bob_headers():
    return {AUTH_HEADER: 'user_bob'}
