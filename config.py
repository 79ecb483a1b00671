import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _database_url() -> str:
    raw_db_url = os.environ.get('DATABASE_URL')
    if raw_db_url:
        # Heroku-style URLs (postgres:// -> postgresql://)
        if raw_db_url.startswith('postgres://'):
            raw_db_url = raw_db_url.replace('postgres://', 'postgresql://', 1)
        return raw_db_url

    sqlite_dir = os.path.join(BASE_DIR, 'instance')
    sqlite_path = os.environ.get('SQLITE_PATH', os.path.join(sqlite_dir, 'squadroll.db'))
    return f'sqlite:///{sqlite_path}'


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-me-dev-secret')

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    RESEND_API_KEY = os.environ.get('RESEND_API_KEY')
    MAIL_FROM_ADDRESS = os.environ.get('MAIL_FROM_ADDRESS', 'SquadRoll <onboarding@resend.dev>')

    # Used to build invitation links sent by email.
    APP_BASE_URL = os.environ.get('APP_BASE_URL', 'http://localhost:5000')
    APP_TIMEZONE = os.environ.get('APP_TIMEZONE', 'America/Sao_Paulo')

    EVENTS_PER_PAGE = int(os.environ.get('EVENTS_PER_PAGE', '20'))
