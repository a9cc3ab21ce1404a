import logging

from flask import Flask

from smartmark.api import api_bp
from smartmark.auth import auth_bp
from smartmark.backend import init_realtime
from smartmark.config import Config
from smartmark.extensions import db, login_manager, migrate
from smartmark.jobs.scheduler import start_scheduler
from smartmark.web import web_bp
from smartmark.workspace import init_workspace


def create_app(config_object=Config):
    app = Flask(__name__, template_folder="../templates", static_folder="../static")
    app.config.from_object(config_object)
    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    init_realtime(app)
    init_workspace(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(web_bp)
    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized Smart Bookmark database.")

    @app.context_processor
    def inject_globals():
        return {"app_name": "Smart Bookmark"}

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
