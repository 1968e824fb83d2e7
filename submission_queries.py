"""
Read and update operations over a single user's submissions.

Every lookup is scoped by user_id: a record owned by someone else is
indistinguishable from a missing one and raises NotFound.
"""
import logging
from collections import Counter
from datetime import datetime, time, timezone

from errors import NotFound, ValidationError
from models import SOLVE_TYPES, Question, Submission, utcnow

logger = logging.getLogger(__name__)

DIFFICULTIES = ('Easy', 'Medium', 'Hard')
MODES = ('submissions', 'reminders')
REMINDER_ACTIONS = ('complete', 'reschedule', 'undo')

# Denormalized submission field -> Question attribute used as read-time fallback
FALLBACK_FIELDS = {
    'difficulty': 'difficulty',
    'questionNumber': 'question_number',
    'topicTags': 'topic_tags',
    'questionLink': 'link',
}


# --- Parsing helpers ---

def parse_datetime(value, field_name, end_of_day=False):
    """
    Parses an ISO-8601 date or datetime into naive UTC.

    A bare date (no time part) means the start of that day, or its last
    microsecond when end_of_day is set, so date-only end bounds are inclusive.
    """
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'Invalid date for {field_name}: {value!r}')

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    if end_of_day and 'T' not in text and ' ' not in text:
        parsed = datetime.combine(parsed.date(), time.max)
    return parsed


def parse_bool(value):
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def normalize_tags(tags):
    if tags is None:
        return None
    if not isinstance(tags, list):
        raise ValidationError('topicTags must be a list')
    result = {}
    for tag in tags:
        if isinstance(tag, str):
            tag = {'name': tag, 'slug': tag.strip().lower().replace(' ', '-')}
        if not isinstance(tag, dict) or not tag.get('slug'):
            raise ValidationError('Each topic tag needs a slug')
        result.setdefault(tag['slug'], {'name': tag.get('name') or tag['slug'], 'slug': tag['slug']})
    return list(result.values())


# --- Reads ---

def get_owned_submission(session, user, submission_id):
    try:
        submission_id = int(submission_id)
    except (TypeError, ValueError):
        raise NotFound('Submission not found')
    if user.id is None:
        raise NotFound('Submission not found')

    submission = session.query(Submission).filter_by(id=submission_id, user_id=user.id).first()
    if submission is None:
        raise NotFound('Submission not found')
    return submission


def enrich(session, submissions, now=None):
    """
    Serializes submissions, filling missing denormalized metadata from the
    question cache. Stored rows are left untouched.
    """
    now = now or utcnow()
    slugs = {s.title_slug for s in submissions}
    questions = {}
    if slugs:
        rows = session.query(Question).filter(Question.title_slug.in_(slugs)).all()
        questions = {q.title_slug: q for q in rows}

    results = []
    for submission in submissions:
        data = submission.to_dict(now=now)
        question = questions.get(submission.title_slug)
        if question is not None:
            for key, attr in FALLBACK_FIELDS.items():
                if not data.get(key):
                    value = getattr(question, attr)
                    if value:
                        data[key] = value
        results.append(data)
    return results


def build_query(session, user, filters, now=None):
    query = session.query(Submission).filter(Submission.user_id == user.id)

    mode = filters.get('mode') or 'submissions'
    if mode not in MODES:
        raise ValidationError(f"mode must be one of {', '.join(MODES)}")

    if parse_bool(filters.get('pendingReminders')):
        # Overrides date bounds
        target = parse_datetime(filters.get('targetDate'), 'targetDate', end_of_day=True) or now or utcnow()
        query = query.filter(
            Submission.reminder_date.isnot(None),
            Submission.reminder_date <= target,
            Submission.reminder_completed.is_(False),
        )
        order_column = Submission.reminder_date
    else:
        column = Submission.reminder_date if mode == 'reminders' else Submission.timestamp
        if mode == 'reminders':
            query = query.filter(Submission.reminder_date.isnot(None))
        start = parse_datetime(filters.get('startDate'), 'startDate')
        end = parse_datetime(filters.get('endDate'), 'endDate', end_of_day=True)
        if start is not None:
            query = query.filter(column >= start)
        if end is not None:
            query = query.filter(column <= end)
        order_column = column

    if parse_bool(filters.get('needsMetadata')):
        query = query.filter(Submission.solve_type.is_(None))
    else:
        solve_type = filters.get('solveType')
        if solve_type and solve_type != 'all':
            if solve_type not in SOLVE_TYPES:
                raise ValidationError(f"solveType must be 'all' or one of {', '.join(SOLVE_TYPES)}")
            query = query.filter(Submission.solve_type == solve_type)

    return query.order_by(order_column.desc(), Submission.id.desc())


def list_submissions(session, user, filters=None, now=None):
    """Returns the user's submissions matching filters, newest first, enriched."""
    if user.id is None:
        return []
    now = now or utcnow()
    submissions = build_query(session, user, filters or {}, now=now).all()
    return enrich(session, submissions, now=now)


def calculate_stats(submissions):
    stats = {
        'total': len(submissions),
        'new': 0,
        'revision': 0,
        'practice': 0,
        'old': 0,
        'unclassified': 0,
        'firstSolves': 0,
        'languages': set(),
        'byDay': Counter(),
    }
    for s in submissions:
        if s.solve_type in SOLVE_TYPES:
            stats[s.solve_type] += 1
        else:
            stats['unclassified'] += 1
        if s.is_first_solve:
            stats['firstSolves'] += 1
        if s.lang:
            stats['languages'].add(s.lang)
        stats['byDay'][s.timestamp.date().isoformat()] += 1

    stats['languages'] = sorted(stats['languages'])
    stats['byDay'] = dict(sorted(stats['byDay'].items()))
    return stats


def submission_stats(session, user, filters=None):
    if user.id is None:
        return calculate_stats([])
    filters = {k: (filters or {}).get(k) for k in ('startDate', 'endDate', 'solveType')}
    return calculate_stats(build_query(session, user, filters).all())


# --- Updates ---

def _set_reminder_completed(submission, completed, now):
    if completed and not submission.reminder_completed:
        submission.reminder_completed = True
        submission.completed_at = now
    elif not completed and submission.reminder_completed:
        # Undo: Completed -> Pending
        submission.reminder_completed = False
        submission.completed_at = None


def update_submission(session, user, submission_id, patch, now=None):
    """
    Applies a partial update; keys absent from patch are left untouched.

    Corrections to number, difficulty or tags are copied to the shared
    question cache as well.
    """
    if submission_id in (None, ''):
        raise ValidationError('ID required')
    submission = get_owned_submission(session, user, submission_id)
    now = now or utcnow()
    question_patch = {}

    if 'solveType' in patch:
        solve_type = patch['solveType']
        if solve_type is not None and solve_type not in SOLVE_TYPES:
            raise ValidationError(f"solveType must be one of {', '.join(SOLVE_TYPES)}")
        submission.solve_type = solve_type

    if 'notes' in patch:
        submission.notes = patch['notes'] or None

    if 'reminderDate' in patch:
        reminder_date = parse_datetime(patch['reminderDate'] or None, 'reminderDate')
        submission.reminder_date = reminder_date
        if reminder_date is None:
            submission.reminder_completed = False
            submission.completed_at = None

    if patch.get('reminderCompleted') is not None:
        completed = parse_bool(patch['reminderCompleted'])
        if completed and submission.reminder_date is None:
            raise ValidationError('Cannot complete a reminder that is not set')
        _set_reminder_completed(submission, completed, now)

    if 'questionLink' in patch:
        submission.question_link = patch['questionLink'] or None

    if 'questionNumber' in patch:
        number = patch['questionNumber']
        if number in (None, ''):
            submission.question_number = None
        else:
            try:
                number = int(number)
            except (TypeError, ValueError):
                raise ValidationError('questionNumber must be an integer')
            submission.question_number = number
            question_patch['question_number'] = number

    if 'difficulty' in patch:
        difficulty = patch['difficulty'] or None
        if difficulty is not None and difficulty not in DIFFICULTIES:
            raise ValidationError(f"difficulty must be one of {', '.join(DIFFICULTIES)}")
        submission.difficulty = difficulty
        if difficulty:
            question_patch['difficulty'] = difficulty

    if 'topicTags' in patch:
        tags = normalize_tags(patch['topicTags'])
        submission.topic_tags = tags or None
        if tags:
            question_patch['topic_tags'] = tags

    if question_patch:
        question = session.query(Question).filter_by(title_slug=submission.title_slug).first()
        if question is not None:
            question.apply_metadata(question_patch)
        else:
            logger.warning("No cached question for %s, metadata kept on submission only", submission.title_slug)

    session.commit()
    return submission


def list_due_reminders(session, user, now=None):
    """Reminders due by the end of today and not yet completed, oldest first."""
    if user.id is None:
        return []
    now = now or utcnow()
    end_of_today = datetime.combine(now.date(), time.max)
    reminders = session.query(Submission).filter(
        Submission.user_id == user.id,
        Submission.reminder_date.isnot(None),
        Submission.reminder_date <= end_of_today,
        Submission.reminder_completed.is_(False),
    ).order_by(Submission.reminder_date.asc(), Submission.id.asc()).all()
    return enrich(session, reminders, now=now)


def update_reminder(session, user, submission_id, action, new_date=None, now=None):
    if submission_id in (None, '') or not action:
        raise ValidationError('ID and action are required')
    if action not in REMINDER_ACTIONS:
        raise ValidationError('Invalid action or missing newDate')
    if action == 'reschedule' and not new_date:
        raise ValidationError('Invalid action or missing newDate')

    submission = get_owned_submission(session, user, submission_id)
    if submission.reminder_date is None and action != 'reschedule':
        raise ValidationError('No reminder set on this submission')

    now = now or utcnow()
    if action == 'complete':
        _set_reminder_completed(submission, True, now)
    elif action == 'undo':
        _set_reminder_completed(submission, False, now)
    else:
        submission.reminder_date = parse_datetime(new_date, 'newDate')

    session.commit()
    return submission


def question_detail(session, user, title_slug):
    if not title_slug:
        raise ValidationError('titleSlug is required')
    question = session.query(Question).filter_by(title_slug=title_slug).first()
    if question is None:
        raise NotFound('Question not found')

    submissions = []
    if user.id is not None:
        submissions = session.query(Submission).filter_by(
            user_id=user.id, title_slug=title_slug,
        ).order_by(Submission.timestamp.desc()).all()
    return {
        'question': question.to_dict(),
        'submissions': enrich(session, submissions),
    }
