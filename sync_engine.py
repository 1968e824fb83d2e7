import logging
from dataclasses import dataclass, field
from typing import List

from sqlalchemy.exc import IntegrityError

from errors import MissingLinkedAccount, NotFound, TrackerError, UpstreamFetchFailed
from models import Question, Submission, User, from_epoch, utcnow

logger = logging.getLogger(__name__)


def canonical_link(title_slug):
    return f'https://leetcode.com/problems/{title_slug}/'


@dataclass
class SyncResult:
    new_submissions: List[Submission] = field(default_factory=list)
    message: str = ''

    def to_dict(self):
        return {
            'message': self.message,
            'newSubmissions': [s.to_dict() for s in self.new_submissions],
        }


class SyncEngine:
    """
    Pulls the latest accepted submissions of one user into the store.

    Every event commits on its own, so a crash mid-batch leaves earlier events
    recorded and the rest are picked up on the next sync. Reprocessing is safe
    because an event is keyed on (user, slug, timestamp).
    """

    def __init__(self, session, client):
        self.session = session
        self.client = client

    def synchronize(self, user: User) -> SyncResult:
        username = (user.leetcode_username or '').strip() if user is not None else ''
        if user is None or user.id is None or not username:
            raise MissingLinkedAccount()

        logger.info("Starting LeetCode sync for user %s (%s)", user.id, username)
        self._refresh_stats(user, username)

        # Only fatal step: raises UpstreamFetchFailed before any submission is written
        events = self.client.fetch_accepted_submissions(username)
        accepted = [e for e in events if e.get('statusDisplay') == 'Accepted']

        result = SyncResult()
        if not accepted:
            self._stamp_sync(user)
            result.message = 'No new accepted submissions found'
            return result

        for event in accepted:
            submission = self._process_event(user, event)
            if submission is not None:
                result.new_submissions.append(submission)

        self._stamp_sync(user)
        count = len(result.new_submissions)
        result.message = f'Successfully synced {count} new submissions'
        logger.info("Sync finished for user %s: %d new of %d accepted", user.id, count, len(accepted))
        return result

    def _refresh_stats(self, user, username):
        try:
            user.stats = self.client.fetch_solved_stats(username)
            user.updated_at = utcnow()
            self.session.commit()
        except TrackerError as e:
            self.session.rollback()
            logger.warning("Could not refresh stats for %s: %s", username, e.details or e)

    def _stamp_sync(self, user):
        user.last_leetcode_sync = utcnow()
        self.session.commit()

    def _process_event(self, user, event):
        slug = event.get('titleSlug')
        if not slug or event.get('timestamp') is None:
            logger.warning("Skipping malformed submission event: %r", event)
            return None
        try:
            timestamp = from_epoch(event['timestamp'])
        except (TypeError, ValueError, OverflowError, OSError):
            logger.warning("Skipping submission event with bad timestamp: %r", event)
            return None

        if self._exists(user.id, slug, timestamp):
            return None

        metadata = self._fetch_metadata(slug)

        try:
            self._upsert_question(slug, event, timestamp, metadata)

            is_first_solve = not self.session.query(
                self.session.query(Submission).filter_by(user_id=user.id, title_slug=slug).exists()
            ).scalar()

            if not is_first_solve:
                self._resolve_reminders(user.id, slug, timestamp)

            submission = Submission(
                user_id=user.id,
                title_slug=slug,
                title=event.get('title') or slug,
                timestamp=timestamp,
                lang=event.get('lang'),
                solve_type='new',
                notes=None,
                reminder_date=None,
                reminder_completed=False,
                is_first_solve=is_first_solve,
                difficulty=metadata.get('difficulty'),
                question_number=metadata.get('question_number'),
                topic_tags=metadata.get('topic_tags') or None,
                question_link=metadata.get('link'),
            )
            self.session.add(submission)
            self.session.commit()
        except IntegrityError:
            # A concurrent sync recorded this event (or created the question) first
            self.session.rollback()
            logger.warning("Concurrent write while recording %s at %s, skipped", slug, timestamp)
            return None

        return submission

    def _exists(self, user_id, slug, timestamp):
        return self.session.query(
            self.session.query(Submission).filter_by(user_id=user_id, title_slug=slug, timestamp=timestamp).exists()
        ).scalar()

    def _fetch_metadata(self, slug):
        try:
            return self.client.fetch_problem(slug)
        except TrackerError as e:
            logger.warning("Metadata lookup failed for %s: %s", slug, e.details or e)
            return {}

    def _upsert_question(self, slug, event, timestamp, metadata):
        question = self.session.query(Question).filter_by(title_slug=slug).first()
        if question is None:
            question = Question(title_slug=slug, topic_tags=[], total_solves=0)
            self.session.add(question)

        question.apply_metadata(metadata)
        question.title = event.get('title') or question.title or slug
        question.link = question.link or canonical_link(slug)

        if event.get('lang'):
            question.languages.add(event['lang'])
        question.record_solve(timestamp)
        self.session.flush()
        return question

    def refresh_question(self, title_slug):
        """Re-fetches metadata for a cached question; lookup failures propagate."""
        question = self.session.query(Question).filter_by(title_slug=title_slug).first()
        if question is None:
            raise NotFound('Question not found')
        try:
            metadata = self.client.fetch_problem(title_slug)
        except UpstreamFetchFailed as e:
            raise UpstreamFetchFailed('Failed to refresh question metadata', details=e.details) from e
        question.apply_metadata(metadata)
        self.session.commit()
        logger.info("Refreshed metadata for %s", title_slug)
        return question

    def _resolve_reminders(self, user_id, slug, timestamp):
        pending = self.session.query(Submission).filter(
            Submission.user_id == user_id,
            Submission.title_slug == slug,
            Submission.reminder_date.isnot(None),
            Submission.reminder_date <= timestamp,
            Submission.reminder_completed.is_(False),
        ).all()
        for submission in pending:
            submission.reminder_completed = True
            submission.completed_at = timestamp
        if pending:
            logger.info("Auto-completed %d reminder(s) for %s", len(pending), slug)
        return pending
