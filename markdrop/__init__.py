import click
from flask import Flask

from markdrop.api import api_bp
from markdrop.config import Config
from markdrop.extensions import db, migrate
from markdrop.jobs.scheduler import start_scheduler
from markdrop.runtime import init_runtime
from markdrop.services.pinboard import PinboardClient


def create_app(config_object=Config, remote_service=None):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    migrate.init_app(app, db)

    app.register_blueprint(api_bp)

    runtime = init_runtime(
        app, remote_service or PinboardClient.from_config(app.config)
    )

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized markdrop database.")

    @app.cli.command("queue-list")
    def queue_list_command():
        items = runtime.store.list()
        if not items:
            print("Retry queue is empty.")
            return
        for item in items:
            print(
                f"#{item.id} {item.payload.get('url')} "
                f"attempts={item.attempt_count} "
                f"next={item.as_dict()['next_attempt_at']} "
                f"error={item.last_error or '-'}"
            )

    @app.cli.command("queue-retry")
    @click.option("--remove", "remove_id", type=int, default=None)
    def queue_retry_command(remove_id):
        if remove_id is not None:
            runtime.store.remove(remove_id)
            print(f"Removed queue item {remove_id}.")
            return
        result = runtime.retry_scheduler.retry_now()
        print(f"Retried queue: sent {result.sent}, remaining {result.remaining}")

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
