"""Account registration and login for portal users."""
import re

from flask import Blueprint, request, jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash, check_password_hash
from tourney_portal.app import db
from tourney_portal.auth_utils import generate_token, login_required, csrf_token_for_bearer
from tourney_portal.errors import AuthenticationError, ConflictError, ValidationError
from tourney_portal.models import User, Membership

auth_bp = Blueprint('auth', __name__)


def _password_complexity_error(raw_password):
    password = str(raw_password or '')
    if len(password) < 8:
        return 'Password must be at least 8 characters long'
    if not re.search(r'[A-Za-z]', password) or not re.search(r'\d', password):
        return 'Password must include at least one letter and one number'
    return None


def _session_payload(user):
    return {'token': generate_token(user.id), 'user': user.to_dict()}


@auth_bp.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    username = str(data.get('username') or '').strip()
    email = str(data.get('email') or '').strip().lower()
    if not username or not email or not data.get('password'):
        raise ValidationError('Username, email, and password are required')

    password_error = _password_complexity_error(data.get('password'))
    if password_error:
        raise ValidationError(password_error)

    if User.query.filter_by(username=username).first():
        raise ConflictError('Username already taken')
    if User.query.filter(db.func.lower(User.email) == email).first():
        raise ConflictError('Email already registered')

    user = User(
        username=username,
        email=email,
        password_hash=generate_password_hash(data['password']),
        name=str(data.get('name') or '').strip()[:120],
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError('Username or email already registered')
    return jsonify(_session_payload(user)), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = str(data.get('email') or '').strip().lower()
    if not email or not data.get('password'):
        raise ValidationError('Email and password are required')

    user = User.query.filter(db.func.lower(User.email) == email).first()
    if not user or not check_password_hash(user.password_hash, str(data['password'])):
        raise AuthenticationError('Invalid email or password')
    return jsonify(_session_payload(user))


@auth_bp.route('/me', methods=['GET'])
@login_required
def get_me():
    """The signed-in user with their club memberships."""
    user = request.current_user
    memberships = Membership.query.filter_by(user_id=user.id).order_by(Membership.id.asc()).all()
    return jsonify({
        'user': user.to_dict(),
        'memberships': [
            dict(membership.to_dict(), club=membership.club.to_dict(),
                 team=membership.team.to_dict() if membership.team else None)
            for membership in memberships
        ],
    })


@auth_bp.route('/csrf', methods=['GET'])
@login_required
def get_csrf_token():
    return jsonify({'csrf_token': csrf_token_for_bearer(request.headers.get('Authorization'))})
