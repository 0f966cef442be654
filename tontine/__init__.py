import logging
from datetime import timedelta

import click
from flask import Flask, current_app

from tontine.extensions import db, login_manager
from config import Config


def create_app(config_class=Config, workflow=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    # User loader for Flask-Login
    from tontine.models import User

    @login_manager.user_loader
    def load_user(user_id):
        user = db.session.get(User, int(user_id))
        # Sessions of deactivated or deleted accounts stop working
        if user is None or not user.is_active or user.is_deleted():
            return None
        return user

    # Register blueprints
    from tontine.routes.auth import auth_bp
    from tontine.routes.validations import validations_bp
    from tontine.routes.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(validations_bp)
    app.register_blueprint(admin_bp)

    app.extensions['validation_workflow'] = workflow or _build_workflow(app)

    _register_commands(app)

    with app.app_context():
        db.create_all()

    return app


def _build_workflow(app):
    from tontine.services.audit_service import SqlAuditSink
    from tontine.services.identity_service import UserDirectory
    from tontine.services.notification_service import build_notifier
    from tontine.services.validation_service import ValidationWorkflow

    directory = UserDirectory()
    return ValidationWorkflow(
        notifier=build_notifier(app.config, directory),
        audit=SqlAuditSink(),
        directory=directory,
        code_ttl=timedelta(minutes=app.config['VALIDATION_CODE_TTL_MINUTES']),
        request_ttl=timedelta(hours=app.config['VALIDATION_REQUEST_TTL_HOURS']),
    )


def get_workflow():
    """The ValidationWorkflow bound to the current app."""
    return current_app.extensions['validation_workflow']


def _register_commands(app):

    @app.cli.command('expire-validations')
    def expire_validations():
        """Expire timed-out validation requests (run from cron)."""
        expired = get_workflow().expire_sweep()
        click.echo(f"Expired {len(expired)} validation request(s)")
