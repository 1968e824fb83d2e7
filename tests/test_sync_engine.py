"""
Tests for the LeetCode submission sync.

Covers idempotence, first-solve detection, question cache upserts,
reminder auto-completion and degraded enrichment.
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from errors import MissingLinkedAccount, NotFound, UpstreamFetchFailed
from models import db, Question, Submission, User, from_epoch
from leetcode_api import LeetCodeClient
from sync_engine import SyncEngine
from tests.conftest import make_event


@pytest.fixture
def engine(app, leetcode):
    return SyncEngine(db.session, leetcode)


class TestSynchronize:

    def test_first_sync_records_submission_and_question(self, engine, leetcode, alice):
        leetcode.submissions = [make_event()]

        result = engine.synchronize(alice)

        assert len(result.new_submissions) == 1
        assert result.message == 'Successfully synced 1 new submissions'
        submission = Submission.query.one()
        assert submission.user_id == alice.id
        assert submission.is_first_solve is True
        assert submission.solve_type == 'new'
        assert submission.reminder_date is None
        assert submission.reminder_completed is False
        assert submission.timestamp == datetime(2023, 11, 14, 22, 13, 20)
        assert submission.difficulty == 'Easy'
        assert submission.question_number == 1

        question = Question.query.filter_by(title_slug='two-sum').one()
        assert set(question.languages) == {'python'}
        assert question.total_solves == 1
        assert question.first_solved_at == submission.timestamp
        assert question.last_solved_at == submission.timestamp
        assert question.difficulty == 'Easy'

    def test_second_sync_with_same_batch_is_noop(self, engine, leetcode, alice):
        leetcode.submissions = [make_event()]
        engine.synchronize(alice)

        result = engine.synchronize(alice)

        assert result.new_submissions == []
        assert Submission.query.count() == 1
        assert Question.query.one().total_solves == 1

    def test_duplicate_events_in_one_batch_insert_once(self, engine, leetcode, alice):
        leetcode.submissions = [make_event(), make_event()]

        result = engine.synchronize(alice)

        assert len(result.new_submissions) == 1
        assert Submission.query.count() == 1

    def test_later_solves_of_same_slug_are_not_first(self, engine, leetcode, alice):
        # API order is newest first and is kept as received
        leetcode.submissions = [
            make_event(timestamp=1700200000, lang='cpp'),
            make_event(timestamp=1700100000),
        ]

        result = engine.synchronize(alice)

        assert [s.is_first_solve for s in result.new_submissions] == [True, False]
        leetcode.submissions = [make_event(timestamp=1700300000)] + leetcode.submissions
        result = engine.synchronize(alice)
        assert [s.is_first_solve for s in result.new_submissions] == [False]

        question = Question.query.one()
        assert set(question.languages) == {'python', 'cpp'}
        assert question.total_solves == 3
        assert question.first_solved_at == from_epoch(1700100000)
        assert question.last_solved_at == from_epoch(1700300000)

    def test_first_solve_is_per_user(self, engine, leetcode, alice, bob):
        leetcode.submissions = [make_event()]
        engine.synchronize(alice)

        result = engine.synchronize(bob)

        assert len(result.new_submissions) == 1
        assert result.new_submissions[0].is_first_solve is True
        assert Submission.query.count() == 2
        assert Question.query.count() == 1

    def test_only_accepted_events_are_recorded(self, engine, leetcode, alice):
        leetcode.submissions = [
            make_event(status='Wrong Answer', timestamp=1700000100),
            make_event(),
            make_event(slug='add-two-numbers', title='Add Two Numbers', status='Time Limit Exceeded'),
        ]

        result = engine.synchronize(alice)

        assert len(result.new_submissions) == 1
        assert Submission.query.one().title_slug == 'two-sum'

    def test_empty_batch_is_success(self, engine, leetcode, alice):
        leetcode.submissions = [make_event(status='Runtime Error')]

        result = engine.synchronize(alice)

        assert result.new_submissions == []
        assert result.message == 'No new accepted submissions found'
        assert alice.last_leetcode_sync is not None

    def test_missing_username_fails_fast(self, engine, leetcode, app):
        user = User(auth_id='user_nobody')
        db.session.add(user)
        db.session.commit()

        with pytest.raises(MissingLinkedAccount):
            engine.synchronize(user)

    def test_unsaved_user_has_no_linked_account(self, engine):
        with pytest.raises(MissingLinkedAccount):
            engine.synchronize(User(auth_id='user_new', leetcode_username='carol'))

    def test_upstream_failure_writes_nothing(self, engine, leetcode, alice):
        leetcode.submissions = [make_event()]
        leetcode.fail_submissions = True

        with pytest.raises(UpstreamFetchFailed) as exc:
            engine.synchronize(alice)

        assert 'timed out' in exc.value.details
        assert Submission.query.count() == 0
        assert Question.query.count() == 0

    def test_stats_are_cached_on_user(self, engine, leetcode, alice):
        engine.synchronize(alice)

        assert alice.stats['solvedProblem'] == 1
        assert alice.last_leetcode_sync is not None

    def test_stats_failure_does_not_abort_sync(self, engine, leetcode, alice):
        leetcode.fail_stats = True
        leetcode.submissions = [make_event()]

        result = engine.synchronize(alice)

        assert len(result.new_submissions) == 1
        assert alice.stats is None

    def test_metadata_failure_degrades_to_unknown(self, engine, leetcode, alice):
        leetcode.fail_problems = True
        leetcode.submissions = [make_event()]

        result = engine.synchronize(alice)

        submission = result.new_submissions[0]
        assert submission.difficulty is None
        assert submission.question_number is None
        assert submission.topic_tags is None
        question = Question.query.one()
        assert question.difficulty is None
        assert question.link == 'https://leetcode.com/problems/two-sum/'

    def test_malformed_metadata_payload_degrades_to_unknown(self, leetcode, alice):
        def fake_get(url, params=None, timeout=None):
            resp = MagicMock(ok=True, status_code=200)
            if url.endswith('/select'):
                resp.json.return_value = {
                    'titleSlug': params['titleSlug'], 'difficulty': 'Easy',
                    'topicTags': ['Array', None],
                }
            elif url.endswith('/solved'):
                resp.json.return_value = {'solvedProblem': 2}
            else:
                resp.json.return_value = {'submission': [
                    make_event(slug='valid-anagram', title='Valid Anagram', timestamp=1700000500),
                    make_event(),
                ]}
            return resp

        session = MagicMock()
        session.get.side_effect = fake_get
        engine = SyncEngine(db.session, LeetCodeClient(session=session))

        result = engine.synchronize(alice)

        assert [s.title_slug for s in result.new_submissions] == ['valid-anagram', 'two-sum']
        assert result.new_submissions[0].difficulty == 'Easy'
        assert result.new_submissions[0].topic_tags is None

    def test_bad_timestamp_skips_only_that_event(self, engine, leetcode, alice):
        leetcode.submissions = [
            make_event(slug='a', title='A', timestamp='17e8'),
            make_event(slug='b', title='B', timestamp='99999999999999999999'),
            make_event(),
        ]

        result = engine.synchronize(alice)

        assert [s.title_slug for s in result.new_submissions] == ['two-sum']
        assert Submission.query.count() == 1
        assert Question.query.count() == 1

    def test_unknown_metadata_keeps_cached_values(self, engine, leetcode, alice):
        leetcode.submissions = [make_event()]
        engine.synchronize(alice)

        leetcode.fail_problems = True
        leetcode.submissions = [make_event(timestamp=1700500000)]
        engine.synchronize(alice)

        question = Question.query.one()
        assert question.difficulty == 'Easy'
        assert question.question_number == 1
        assert {t['slug'] for t in question.topic_tags} == {'array', 'hash-table'}

    def test_metadata_not_fetched_for_known_events(self, engine, leetcode, alice):
        leetcode.submissions = [make_event()]
        engine.synchronize(alice)
        leetcode.problem_calls.clear()

        engine.synchronize(alice)

        assert leetcode.problem_calls == []


class TestReminderAutoResolution:

    def _with_reminder(self, engine, leetcode, user, due):
        leetcode.submissions = [make_event()]
        engine.synchronize(user)
        submission = Submission.query.filter_by(user_id=user.id).one()
        submission.reminder_date = due
        db.session.commit()
        return submission

    def test_new_solve_completes_due_reminder(self, engine, leetcode, alice):
        submission = self._with_reminder(engine, leetcode, alice, from_epoch(1700000000) + timedelta(days=1))
        later = 1700000000 + 2 * 86400
        leetcode.submissions = [make_event(timestamp=later)] + leetcode.submissions

        engine.synchronize(alice)

        db.session.refresh(submission)
        assert submission.reminder_completed is True
        assert submission.completed_at == from_epoch(later)
        assert submission.reminder_status() == 'completed'

    def test_solve_before_due_date_leaves_reminder_pending(self, engine, leetcode, alice):
        submission = self._with_reminder(engine, leetcode, alice, from_epoch(1700000000) + timedelta(days=10))
        leetcode.submissions = [make_event(timestamp=1700000000 + 86400)] + leetcode.submissions

        engine.synchronize(alice)

        db.session.refresh(submission)
        assert submission.reminder_completed is False
        assert submission.completed_at is None

    def test_other_users_reminders_untouched(self, engine, leetcode, alice, bob):
        submission = self._with_reminder(engine, leetcode, alice, from_epoch(1700000000))
        leetcode.submissions = [make_event(timestamp=1700000000 + 86400)]

        engine.synchronize(bob)

        db.session.refresh(submission)
        assert submission.reminder_completed is False


class TestRefreshQuestion:

    def test_refresh_patches_cached_question(self, engine, leetcode, alice):
        leetcode.fail_problems = True
        leetcode.submissions = [make_event()]
        engine.synchronize(alice)

        leetcode.fail_problems = False
        question = engine.refresh_question('two-sum')

        assert question.difficulty == 'Easy'
        assert question.question_number == 1

    def test_refresh_unknown_question(self, engine):
        with pytest.raises(NotFound):
            engine.refresh_question('not-cached')

    def test_refresh_lookup_failure_propagates(self, engine, leetcode, alice):
        leetcode.submissions = [make_event()]
        engine.synchronize(alice)
        leetcode.fail_problems = True

        with pytest.raises(UpstreamFetchFailed):
            engine.refresh_question('two-sum')
