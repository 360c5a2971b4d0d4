import asyncio
import os

from flask import Flask
from supabase import acreate_client, create_client

from .auth.routes import auth_bp
from .main.routes import main_bp
from .realtime import DashboardMonitor, SupabaseChangeFeed, dashboard_loader
from .session import current_user


def create_app():
    app = Flask(
        __name__,
        template_folder="../templates",
        static_folder="../static",
    )
    app.secret_key = os.environ["SECRET_KEY"]

    supabase = create_client(
        os.environ["SUPABASE_URL"],
        os.environ["SUPABASE_SERVICE_KEY"],
    )
    app.config["SUPABASE"] = supabase
    app.config["SUPABASE_URL"] = os.environ["SUPABASE_URL"]
    app.config["SUPABASE_SERVICE_KEY"] = os.environ["SUPABASE_SERVICE_KEY"]
    app.config["LOCAL_TIMEZONE"] = os.environ.get("LOCAL_TIMEZONE", "America/Bogota")
    app.config["WKHTMLTOPDF_CMD"] = os.environ.get("WKHTMLTOPDF_CMD")

    app.register_blueprint(auth_bp)
    app.register_blueprint(main_bp)

    @app.context_processor
    def inject_user_context():
        user = current_user()
        return {
            "current_user": user,
            "user_role": user.role if user else None,
        }

    @app.cli.command("watch-dashboard")
    def watch_dashboard():
        """Refresh the dashboard snapshot whenever production data changes."""

        asyncio.run(_watch_dashboard(app))

    return app


async def _watch_dashboard(app):
    client = await acreate_client(
        app.config["SUPABASE_URL"], app.config["SUPABASE_SERVICE_KEY"]
    )
    with app.app_context():
        monitor = DashboardMonitor(dashboard_loader())
        app.logger.info("Watching production changes for dashboard refreshes")
        try:
            await monitor.watch(lambda: SupabaseChangeFeed(client))
        finally:
            app.logger.info(
                "Dashboard watcher stopped after %d refreshes (%d skipped)",
                monitor.refresh_count,
                monitor.skipped,
            )
