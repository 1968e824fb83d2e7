"""Client for the public LeetCode API proxy.

Only three calls are needed: recent accepted submissions for a user, the
user's lifetime solved stats, and per-problem metadata.
"""
import logging

import requests

from errors import UpstreamFetchFailed

logger = logging.getLogger(__name__)

BASE_URL = 'https://alfa-leetcode-api.onrender.com'

# The API only exposes the last N accepted submissions
SUBMISSION_LIMIT = 20
REQUEST_TIMEOUT = 10


class LeetCodeClient:

    def __init__(self, base_url=BASE_URL, session=None, timeout=REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get_json(self, path, params=None):
        url = f'{self.base_url}/{path.lstrip("/")}'
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamFetchFailed(details=f'Failed to connect to LeetCode: {e}') from e

        if not resp.ok:
            raise UpstreamFetchFailed(details=f'LeetCode API returned {resp.status_code} for {path}')

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamFetchFailed(details=f'Invalid JSON from LeetCode API for {path}') from e

        if isinstance(data, dict) and data.get('errors'):
            errors = data['errors']
            message = errors[0].get('message') if isinstance(errors, list) and errors else str(errors)
            raise UpstreamFetchFailed(details=f'LeetCode API Error: {message}')
        return data

    def fetch_accepted_submissions(self, username, limit=SUBMISSION_LIMIT):
        """Returns the raw submission list, newest first as the API sends it."""
        data = self._get_json(f'{username}/acSubmission', params={'limit': limit})
        if not isinstance(data, dict):
            raise UpstreamFetchFailed(details='Unexpected response shape from LeetCode API')
        return data.get('submission') or []

    def fetch_solved_stats(self, username):
        return self._get_json(f'{username}/solved')

    def fetch_problem(self, title_slug):
        """
        Fetches difficulty, number, tags and link for one problem.

        Returns a dict with keys title, difficulty, question_number,
        topic_tags and link.
        """
        data = self._get_json('select', params={'titleSlug': title_slug})
        if not isinstance(data, dict) or not data.get('titleSlug'):
            raise UpstreamFetchFailed(details=f'No metadata found for {title_slug}')
        try:
            return normalize_problem(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise UpstreamFetchFailed(details=f'Malformed metadata for {title_slug}: {e}') from e


def normalize_problem(data):
    number = data.get('questionFrontendId') or data.get('questionId')
    try:
        number = int(number) if number is not None else None
    except (TypeError, ValueError):
        number = None

    # Tags are a set keyed by slug
    tags = {}
    raw_tags = data.get('topicTags')
    for tag in raw_tags if isinstance(raw_tags, list) else []:
        if not isinstance(tag, dict):
            continue
        slug = tag.get('slug')
        if slug and slug not in tags:
            tags[slug] = {'name': tag.get('name') or slug, 'slug': slug}

    return {
        'title': data.get('questionTitle'),
        'difficulty': data.get('difficulty'),
        'question_number': number,
        'topic_tags': list(tags.values()),
        'link': data.get('link'),
    }
