import os

from apscheduler.schedulers.background import BackgroundScheduler

from markdrop.runtime import get_runtime


scheduler = BackgroundScheduler()


def run_retry_sweep(app):
    get_runtime(app).retry_scheduler.run_pass()


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_seconds = app.config["RETRY_INTERVAL_SECONDS"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_retry_sweep,
            "interval",
            seconds=interval_seconds,
            kwargs={"app": app},
            id="retry_queue_sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        app.logger.info("Retry worker scheduled every %ss", interval_seconds)
