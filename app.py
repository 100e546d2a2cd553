import os
import logging
from datetime import datetime, timezone

import click
from flask import Flask, jsonify

from config import Config
from extensions import db, login_manager, init_extensions
from models import User
from rewards.config import RewardConfigHelper
from rewards.errors import RewardError


# --------------------------------------------------------------------------------------------------------
#       Application factory
# --------------------------------------------------------------------------------------------------------
def create_app(config_class=Config, chain=None):
    """
    Build the app. `chain` replaces the Polygon gateway (balance reads and transfers);
    when omitted one is built from config on first use.
    """
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
            REMEMBER_COOKIE_SECURE=True,
            REMEMBER_COOKIE_HTTPONLY=True,
        )

    setup_logging(app)
    init_extensions(app)

    if chain is not None:
        app.extensions["reward_chain"] = chain

    register_blueprints(app)
    register_error_handlers(app)
    register_commands(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @app.route("/healthz")
    def healthz():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}, 200

    return app


# ------------------------------------------------------------------------------------------
#       Logging
# ------------------------------------------------------------------------------------------
def setup_logging(app):
    if app.testing:
        return

    logs_dir = "logs"
    if not os.path.exists(logs_dir):
        os.makedirs(logs_dir)

    file_handler = logging.FileHandler("logs/app.log", mode="a", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"
    ))
    file_handler.setLevel(logging.INFO)

    app.logger.handlers.clear()
    app.logger.addHandler(file_handler)
    app.logger.setLevel(logging.INFO)
    app.logger.propagate = False

    if app.debug:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(console_handler)


# ------------------------------------------------------------------------------------------------------------------------
#       Blueprints
# -----------------------------------------------------------------------------------------------------------------------
def register_blueprints(app):
    from blueprints.auth import bp as auth_bp
    from blueprints.profits import bp as profits_bp
    from blueprints.community import bp as community_bp
    from blueprints.referral import bp as referral_bp
    from blueprints.tasks import bp as tasks_bp
    from blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(profits_bp)
    app.register_blueprint(community_bp)
    app.register_blueprint(referral_bp)
    app.register_blueprint(tasks_bp)
    app.register_blueprint(admin_bp)


# ------------------------------------------------------------------------------------------------------------------------
#       Error handlers
# ------------------------------------------------------------------------------------------------------------------------
def register_error_handlers(app):

    @app.errorhandler(RewardError)
    def handle_reward_error(error):
        db.session.rollback()
        app.logger.info(f"{error.kind}: {error.message} {error.context}")
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({"success": False, "error": "forbidden", "message": "Admin access required"}), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"success": False, "error": "not_found", "message": "Resource not found"}), 404


# ------------------------------------------------------------------------------------------------------------------------
#       CLI
# ------------------------------------------------------------------------------------------------------------------------
def register_commands(app):

    @app.cli.command("seed-rewards")
    def seed_rewards():
        """Insert default tiers, commission rates and community levels."""
        created = RewardConfigHelper.seed_defaults()
        db.session.commit()
        click.echo(f"Seeded: {created}")

    @app.cli.command("validate-rewards")
    def validate_rewards():
        ok, problems = RewardConfigHelper.validate_configuration()
        for problem in problems:
            click.echo(f"- {problem}")
        click.echo("Configuration OK" if ok else "Configuration has problems")


# ----------------------
# Local development
# ----------------------
if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    debug_mode = app.config.get("DEBUG", True)
    app.run(debug=debug_mode, host="0.0.0.0", port=port)
