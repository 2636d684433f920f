import sys
import threading

from django.apps import AppConfig
from django.conf import settings


class RankKeeperConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "rankkeeper"
    verbose_name = "RankKeeper Keyword Tracker"

    runtime = None
    _runtime_lock = threading.Lock()

    def get_runtime(self):
        """Build the runtime on first use (needs the database)."""
        with self._runtime_lock:
            if self.runtime is None:
                from .runtime import build_runtime

                self.runtime = build_runtime()
            return self.runtime

    def ready(self):
        if not getattr(settings, "RANKKEEPER_SCHEDULER_ENABLED", True):
            return

        # Don't start the scheduler during management commands
        skip_commands = {"migrate", "makemigrations", "collectstatic", "createsuperuser", "shell", "test"}
        if any(cmd in sys.argv for cmd in skip_commands):
            return

        from .scheduler import start_scheduler

        start_scheduler(self.get_runtime)


def get_runtime():
    from django.apps import apps

    return apps.get_app_config("rankkeeper").get_runtime()
