from flask import (
    Blueprint,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)
from werkzeug.security import check_password_hash, generate_password_hash

from config.supabase_schema import from_supabase_row
from fabrilog import db as db_module
from fabrilog.models import ROLE_ADMIN, ROLE_CLERK, ROLE_OPERATOR
from fabrilog.session import UserSession, current_user

auth_bp = Blueprint('auth', __name__)

ALLOWED_ROLES = {ROLE_ADMIN, ROLE_CLERK}

# werkzeug hashes are prefixed with their method name.
_HASH_PREFIXES = ('scrypt:', 'pbkdf2:')


class LoginError(Exception):
    """Raised when a login attempt must be refused."""

    def __init__(self, message: str, status: int = 401):
        super().__init__(message)
        self.message = message
        self.status = status


def _is_hashed(value: str) -> bool:
    return value.startswith(_HASH_PREFIXES)


def _verify_password(user: dict, password: str) -> bool:
    """Check ``password`` and upgrade legacy plain-text rows on success."""

    stored = user.get('password_hash') or ''
    if not stored:
        return False
    if _is_hashed(stored):
        return check_password_hash(stored, password)

    if stored != password:
        return False

    _, error = db_module.update_password_hash(user.get('id'), generate_password_hash(password))
    if error:
        current_app.logger.warning(
            "Failed to upgrade legacy password for user %s: %s", user.get('id'), error
        )
    return True


def authenticate(cedula: str, password: str) -> UserSession:
    """Return a session for valid staff credentials or raise ``LoginError``."""

    if not cedula or not password:
        raise LoginError('Cédula and password are required.', 400)

    user, error = db_module.fetch_user_for_auth(cedula)
    if error:
        current_app.logger.error("User lookup failed: %s", error)
        raise LoginError('Sign-in is unavailable right now. Try again later.', 502)
    user = from_supabase_row('users', user)
    if not user or user.get('active') is False:
        raise LoginError('Invalid credentials.')

    role = (user.get('role') or '').lower()
    if not _verify_password(user, password):
        raise LoginError('Invalid credentials.')
    if role == ROLE_OPERATOR or role not in ALLOWED_ROLES:
        raise LoginError('Only administrators and clerks can sign in.', 403)

    return UserSession(
        id=user.get('id'),
        name=user.get('name') or '',
        cedula=user.get('cedula') or cedula,
        role=role,
    )


@auth_bp.route('/', methods=['GET', 'POST'])
@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'GET' and current_user() is not None:
        return redirect(url_for('main.home'))

    if request.method == 'POST':
        cedula = (request.form.get('cedula') or '').strip()
        password = request.form.get('password') or ''
        try:
            user = authenticate(cedula, password)
        except LoginError as exc:
            flash(exc.message, 'error')
            return render_template('login.html', cedula=cedula), exc.status

        user.save()
        current_app.logger.info("User %s signed in as %s", user.id, user.role)
        return redirect(url_for('main.home'))
    return render_template('login.html')


@auth_bp.route('/logout')
def logout():
    UserSession.clear()
    return redirect(url_for('auth.login'))
