import click
import structlog
from flask import Flask, jsonify

from config import Config
from database import db
from blueprints.admin import bp as admin_bp
from blueprints.auth import bp as auth_bp
from blueprints.resources import bp as res_bp
from models import Role
from services.admin import Operator
from services.engine import build_engine
from utils.log_config import configure_logging
from utils.results import Failure

logger = structlog.get_logger(__name__)

DEMO_PASSWORD = "Admin@1234"
DEMO_ACCOUNTS = [
    ("Super Admin", "superadmin@demo.com", "+1234567890", Role.SUPERADMIN),
    ("Admin User", "admin@demo.com", "+1234567891", Role.ADMIN),
    ("IT Analyst", "it@demo.com", "+1234567892", Role.IT),
    ("Demo User", "user@demo.com", "+1234567893", Role.USER),
]


def create_app(config=Config, clock=None, notifier=None):
    app = Flask(__name__)
    app.config.from_object(config)
    configure_logging(app.config["LOG_LEVEL"], app.config["LOG_JSON"])
    db.init_app(app)
    app.extensions["zerotrust"] = build_engine(app.config, clock=clock, notifier=notifier)

    app.register_blueprint(auth_bp)
    app.register_blueprint(res_bp)
    app.register_blueprint(admin_bp)

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables."""
        init_db(app)
        click.echo("DB initialized")

    @app.cli.command("seed-demo")
    def seed_demo_command():
        """Create the demo accounts (password Admin@1234)."""
        created = seed_demo(app)
        click.echo(f"Seeded {created} demo account(s)")

    return app


def init_db(app=None):
    app = app or create_app()
    with app.app_context():
        db.create_all()
    logger.info("db_initialized", uri=app.config["SQLALCHEMY_DATABASE_URI"])


def seed_demo(app) -> int:
    created = 0
    with app.app_context():
        db.create_all()
        admin = app.extensions["zerotrust"].admin
        for full_name, email, mobile, role in DEMO_ACCOUNTS:
            result = admin.create_account(Operator(), full_name, email, mobile, DEMO_PASSWORD, role.value)
            if result:
                created += 1
            elif result.failure is not Failure.DUPLICATE_EMAIL:
                logger.warning("seed_failed", email=email, reason=result.message)
    return created


if __name__ == "__main__":
    app = create_app()
    init_db(app)
    app.run(debug=True)
