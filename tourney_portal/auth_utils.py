"""Bearer-token authentication and the CSRF token derived from it."""
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from functools import wraps
from flask import request, current_app
import jwt
from tourney_portal.app import db
from tourney_portal.errors import AuthenticationError
from tourney_portal.models import User


def generate_token(user_id):
    payload = {
        'user_id': user_id,
        'exp': datetime.now(timezone.utc) + timedelta(
            hours=current_app.config.get('JWT_EXPIRATION_HOURS', 24)
        ),
    }
    return jwt.encode(payload, current_app.config['SECRET_KEY'], algorithm='HS256')


def bearer_token(authorization):
    token = str(authorization or '').strip()
    if token.startswith('Bearer '):
        token = token.split(' ', 1)[1].strip()
    return token


def verified_email(user):
    """The address staff invitations and hosting requests are matched against."""
    return str(user.email or '').strip().lower()


def authenticate(authorization):
    """Resolve the user behind an ``Authorization`` header.

    Raises ``AuthenticationError`` for a missing, expired or forged token, and
    for accounts without an email, since every authority lookup keys on it.
    """
    token = bearer_token(authorization)
    if not token:
        raise AuthenticationError('Authentication required')
    try:
        payload = jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError('Token expired')
    except jwt.InvalidTokenError:
        raise AuthenticationError('Invalid token')

    user = db.session.get(User, payload.get('user_id'))
    if not user:
        raise AuthenticationError('User not found')
    if not verified_email(user):
        raise AuthenticationError('Verified email required')
    return user


def csrf_token_for_bearer(authorization):
    token = bearer_token(authorization)
    secret = str(current_app.config.get('SECRET_KEY') or '')
    if not token or not secret:
        return ''
    return hmac.new(secret.encode('utf-8'), token.encode('utf-8'), hashlib.sha256).hexdigest()


def csrf_token_matches(authorization, candidate):
    expected = csrf_token_for_bearer(authorization)
    provided = str(candidate or '').strip()
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected, provided)


def login_required(f):
    """Authenticate the request and expose the user as ``request.current_user``."""
    @wraps(f)
    def decorated(*args, **kwargs):
        request.current_user = authenticate(request.headers.get('Authorization'))
        return f(*args, **kwargs)
    return decorated
