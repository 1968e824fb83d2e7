import os
import logging
from flask import Flask, Blueprint, current_app, jsonify, request
from flask_login import LoginManager, login_required, current_user
from werkzeug.exceptions import HTTPException
from dotenv import load_dotenv

from models import db, User, utcnow
from errors import TrackerError, Unauthenticated, ValidationError
from leetcode_api import LeetCodeClient
from sync_engine import SyncEngine
import submission_queries as queries

load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

login_manager = LoginManager()
api = Blueprint('api', __name__)


# --- Login Setup ---

@login_manager.request_loader
def load_user_from_request(req):
    # The identity proxy in front of the app puts the auth subject id in this header
    subject = (req.headers.get(current_app.config['AUTH_SUBJECT_HEADER']) or '').strip()
    if not subject:
        return None
    user = User.query.filter_by(auth_id=subject).first()
    if user is None:
        # Not saved until the profile is first saved via POST /user
        user = User(auth_id=subject)
    return user


@login_manager.unauthorized_handler
def unauthorized():
    error = Unauthenticated()
    return jsonify(error.to_dict()), error.status_code


def get_leetcode_client():
    return current_app.extensions['leetcode_client']


def get_sync_engine():
    return SyncEngine(db.session, get_leetcode_client())


# --- Routes ---

@api.route('/user', methods=['GET'])
@login_required
def get_user():
    return jsonify(current_user.to_dict())


@api.route('/user', methods=['POST'])
@login_required
def save_user():
    data = request.get_json(silent=True) or {}
    username = (data.get('leetcodeUsername') or '').strip()
    if not username:
        raise ValidationError('Username required')

    user = current_user._get_current_object()
    if user.id is None:
        db.session.add(user)
    user.leetcode_username = username
    user.updated_at = utcnow()
    db.session.commit()
    current_app.logger.info("Linked LeetCode username %s to user %s", username, user.id)
    return jsonify({'success': True, **user.to_dict()})


@api.route('/sync', methods=['POST'])
@login_required
def sync_leetcode():
    result = get_sync_engine().synchronize(current_user._get_current_object())
    return jsonify(result.to_dict())


@api.route('/submissions', methods=['GET'])
@login_required
def get_submissions():
    submissions = queries.list_submissions(db.session, current_user, request.args)
    return jsonify({'submissions': submissions})


@api.route('/submissions', methods=['PATCH'])
@login_required
def update_submission():
    data = request.get_json(silent=True) or {}
    patch = {k: v for k, v in data.items() if k != 'id'}
    submission = queries.update_submission(db.session, current_user, data.get('id'), patch)
    return jsonify({
        'message': 'Submission updated successfully',
        'success': True,
        'submission': queries.enrich(db.session, [submission])[0],
    })


@api.route('/stats', methods=['GET'])
@login_required
def get_stats():
    return jsonify(queries.submission_stats(db.session, current_user, request.args))


@api.route('/questions', methods=['GET'])
@login_required
def get_question():
    return jsonify(queries.question_detail(db.session, current_user, request.args.get('titleSlug')))


@api.route('/questions/refresh', methods=['POST'])
@login_required
def refresh_question():
    data = request.get_json(silent=True) or {}
    title_slug = data.get('titleSlug')
    if not title_slug:
        raise ValidationError('titleSlug is required')
    question = get_sync_engine().refresh_question(title_slug)
    return jsonify({'success': True, 'question': question.to_dict()})


@api.route('/reminders', methods=['GET'])
@login_required
def get_reminders():
    return jsonify({'reminders': queries.list_due_reminders(db.session, current_user)})


@api.route('/reminders', methods=['PATCH'])
@login_required
def update_reminder():
    data = request.get_json(silent=True) or {}
    submission = queries.update_reminder(
        db.session, current_user, data.get('id'), data.get('action'), data.get('newDate'),
    )
    return jsonify({
        'message': 'Reminder updated successfully',
        'success': True,
        'submission': submission.to_dict(),
    })


# --- App Factory ---

def create_app(config=None, leetcode_client=None):
    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'your-secret-key-change-this-for-production')

    # Uses the URL from .env if available, otherwise falls back to local SQLite
    app.config['SQLALCHEMY_DATABASE_URI'] = (
        os.environ.get('SQLALCHEMY_DATABASE_URI') or f'sqlite:///{os.path.join(BASE_DIR, "tracker.db")}'
    )
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['AUTH_SUBJECT_HEADER'] = os.environ.get('AUTH_SUBJECT_HEADER', 'X-Forwarded-User')
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')
    if config:
        app.config.update(config)

    app.logger.setLevel(app.config['LOG_LEVEL'])

    db.init_app(app)
    login_manager.init_app(app)
    app.extensions['leetcode_client'] = leetcode_client or LeetCodeClient()
    app.register_blueprint(api)

    # API responses are per-user and must never be cached
    @app.after_request
    def add_header(response):
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '-1'
        return response

    @app.errorhandler(TrackerError)
    def handle_tracker_error(e):
        db.session.rollback()
        if e.status_code >= 500:
            app.logger.error("%s: %s (%s)", e.kind, e.message, e.details)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.description, 'kind': e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({'error': 'Internal Server Error', 'kind': 'Error'}), 500

    @app.cli.command('init-db')
    def init_db():
        """Creates tables if they don't exist."""
        db.create_all()
        print("Database initialized.")

    return app


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app = create_app()
    with app.app_context():
        db.create_all()  # Creates tables if they don't exist
    app.run(debug=True)
