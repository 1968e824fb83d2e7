from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from sqlalchemy.ext.associationproxy import association_proxy

db = SQLAlchemy()

SOLVE_TYPES = ('new', 'revision', 'practice', 'old')


def utcnow():
    """Naive UTC now; every datetime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_epoch(value):
    """Converts a unix timestamp (int or numeric string) to naive UTC."""
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def isoformat(dt):
    if dt is None:
        return None
    return dt.isoformat() + 'Z'


# 1. User Table
class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    auth_id = db.Column(db.String(255), unique=True, nullable=False)  # external auth subject
    leetcode_username = db.Column(db.String(150), nullable=True)
    stats = db.Column(db.JSON, nullable=True)  # cached lifetime stats from LeetCode

    last_leetcode_sync = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    submissions = db.relationship('Submission', backref='user', lazy='dynamic')

    def to_dict(self):
        return {
            'exists': self.id is not None,
            'leetcodeUsername': self.leetcode_username,
            'stats': self.stats,
            'lastSync': isoformat(self.last_leetcode_sync),
        }


# 2. Question Table (shared metadata cache, one row per slug)
class Question(db.Model):
    __tablename__ = 'questions'

    id = db.Column(db.Integer, primary_key=True)
    title_slug = db.Column(db.String(255), unique=True, nullable=False)
    title = db.Column(db.String(255), nullable=True)
    question_number = db.Column(db.Integer, nullable=True)
    difficulty = db.Column(db.String(20), nullable=True)
    topic_tags = db.Column(db.JSON, nullable=False, default=list)  # [{name, slug}]
    link = db.Column(db.Text, nullable=True)

    total_solves = db.Column(db.Integer, nullable=False, default=0)
    first_solved_at = db.Column(db.DateTime, nullable=True)
    last_solved_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    language_rows = db.relationship(
        'QuestionLanguage',
        collection_class=set,
        cascade='all, delete-orphan',
        lazy='selectin',
    )
    # Set of language names; .add() ignores languages already in the pool
    languages = association_proxy(
        'language_rows', 'language',
        creator=lambda language: QuestionLanguage(language=language),
    )

    def apply_metadata(self, metadata):
        """Patches known fields only; unknown metadata never erases the cache."""
        for attr in ('title', 'difficulty', 'question_number', 'topic_tags', 'link'):
            value = metadata.get(attr)
            if value:
                setattr(self, attr, value)
        self.updated_at = utcnow()

    def record_solve(self, solved_at):
        self.total_solves = (self.total_solves or 0) + 1
        if self.first_solved_at is None or solved_at < self.first_solved_at:
            self.first_solved_at = solved_at
        if self.last_solved_at is None or solved_at > self.last_solved_at:
            self.last_solved_at = solved_at

    def to_dict(self):
        return {
            'id': self.id,
            'titleSlug': self.title_slug,
            'title': self.title,
            'questionNumber': self.question_number,
            'difficulty': self.difficulty,
            'topicTags': self.topic_tags or [],
            'link': self.link,
            'languages': sorted(self.languages),
            'totalSolves': self.total_solves,
            'firstSolvedAt': isoformat(self.first_solved_at),
            'lastSolvedAt': isoformat(self.last_solved_at),
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }

    def __repr__(self):
        return f'<Question {self.title_slug}>'


class QuestionLanguage(db.Model):
    __tablename__ = 'question_languages'
    __table_args__ = (
        db.UniqueConstraint('question_id', 'language', name='uq_question_language'),
    )

    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey('questions.id'), nullable=False)
    language = db.Column(db.String(50), nullable=False)


# 3. Submission Table (one row per accepted solve event of a user)
class Submission(db.Model):
    __tablename__ = 'submissions'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'title_slug', 'timestamp', name='uq_submission_event'),
        db.CheckConstraint(
            "solve_type IS NULL OR solve_type IN ('new', 'revision', 'practice', 'old')",
            name='ck_submission_solve_type',
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    title_slug = db.Column(db.String(255), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False)  # event time, not insert time
    lang = db.Column(db.String(50), nullable=True)

    solve_type = db.Column(db.String(20), nullable=True)  # sync creates rows as 'new'
    notes = db.Column(db.Text, nullable=True)
    is_first_solve = db.Column(db.Boolean, nullable=False, default=False)

    # Reminder
    reminder_date = db.Column(db.DateTime, nullable=True)
    reminder_completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    # Denormalized copy of Question fields, may be missing
    difficulty = db.Column(db.String(20), nullable=True)
    question_number = db.Column(db.Integer, nullable=True)
    topic_tags = db.Column(db.JSON, nullable=True)
    question_link = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def reminder_status(self, now=None):
        """NoReminder -> pending -> completed; 'missed' is derived, never stored."""
        if self.reminder_date is None:
            return None
        if self.reminder_completed:
            return 'completed'
        if self.reminder_date < (now or utcnow()):
            return 'missed'
        return 'pending'

    def to_dict(self, now=None):
        return {
            'id': self.id,
            'titleSlug': self.title_slug,
            'title': self.title,
            'timestamp': isoformat(self.timestamp),
            'lang': self.lang,
            'solveType': self.solve_type,
            'notes': self.notes,
            'isFirstSolve': self.is_first_solve,
            'reminderDate': isoformat(self.reminder_date),
            'reminderCompleted': self.reminder_completed,
            'completedAt': isoformat(self.completed_at),
            'reminderStatus': self.reminder_status(now),
            'difficulty': self.difficulty,
            'questionNumber': self.question_number,
            'topicTags': self.topic_tags,
            'questionLink': self.question_link,
            'createdAt': isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<Submission {self.title_slug} at={self.timestamp}>'
