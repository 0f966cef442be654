import os

basedir = os.path.abspath(os.path.dirname(__file__))


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'your-secret-key-here-make-it-long'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'instance', 'tontine.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Dual-control validation
    VALIDATION_CODE_TTL_MINUTES = int(os.environ.get('VALIDATION_CODE_TTL_MINUTES', 15))
    VALIDATION_REQUEST_TTL_HOURS = int(os.environ.get('VALIDATION_REQUEST_TTL_HOURS', 24))

    # Outbound email (Mailjet). Email delivery is disabled when the keys are missing.
    MAILJET_API_KEY = os.environ.get('MAILJET_API_KEY')
    MAILJET_SECRET_KEY = os.environ.get('MAILJET_SECRET_KEY')
    MAILJET_FROM_EMAIL = os.environ.get('MAILJET_FROM_EMAIL')
    MAILJET_FROM_NAME = os.environ.get('MAILJET_FROM_NAME', 'Tontine')


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LOG_LEVEL = 'DEBUG'
    MAILJET_API_KEY = None
    MAILJET_SECRET_KEY = None
