"""
Run the background dispatch services: the alert scanner and the auto-assign
matcher.

Each service is an independent asyncio task that runs one sweep (in a
worker thread, through ``sync_to_async``) and then sleeps for its interval,
so sweeps of the same service never overlap.  A sweep that raises is logged
and retried on the next tick; a lost database connection stops the process
with exit code 1 so that the supervisor restarts it.
"""
import asyncio
import logging

from asgiref.sync import sync_to_async
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import InterfaceError, close_old_connections

from dispatch.services.alerts import AlertScanner
from dispatch.services.auto_assign import AutoAssignMatcher

logger = logging.getLogger(__name__)


def _tick(sweep):
    close_old_connections()
    try:
        return sweep()
    finally:
        close_old_connections()


class Command(BaseCommand):
    help = "Run the alert scanner and auto-assign matcher on their intervals."

    def add_arguments(self, parser):
        parser.add_argument("--once", action="store_true", help="Run each service once and exit.")
        parser.add_argument("--no-alerts", action="store_true", help="Do not run the alert scanner.")
        parser.add_argument("--no-auto-assign", action="store_true", help="Do not run the auto-assign matcher.")

    def handle(self, *args, **opts):
        services = []
        if not opts["no_alerts"]:
            scanner = AlertScanner()
            services.append(("alerts", settings.DISPATCH_ALERT_INTERVAL_SECONDS, scanner.sweep))
        if not opts["no_auto_assign"]:
            matcher = AutoAssignMatcher()
            services.append(("auto_assign", settings.DISPATCH_AUTO_ASSIGN_INTERVAL_SECONDS, matcher.sweep))
        if not services:
            raise CommandError("Nothing to run: every service is disabled")

        if opts["once"]:
            for name, _, sweep in services:
                result = sweep()
                self.stdout.write(self.style.SUCCESS(f"{name}: {self._describe(result)}"))
            return

        names = ", ".join(f"{name} every {interval}s" for name, interval, _ in services)
        self.stdout.write(f"Starting dispatch services: {names}")
        try:
            asyncio.run(self._run_all(services))
        except InterfaceError as exc:
            logger.critical("Database connection lost, stopping dispatch services: %s", exc)
            raise CommandError("Database connection lost", returncode=1) from exc
        except KeyboardInterrupt:
            self.stdout.write("Stopped.")

    async def _run_all(self, services):
        await asyncio.gather(*(self._loop(name, interval, sweep) for name, interval, sweep in services))

    async def _loop(self, name, interval, sweep):
        while True:
            try:
                await sync_to_async(_tick)(sweep)
            except InterfaceError:
                raise
            except Exception:
                logger.exception("%s sweep failed", name)
            await asyncio.sleep(interval)

    @staticmethod
    def _describe(result):
        if isinstance(result, list):
            return f"{len(result)} alert(s)"
        return f"{result.count} assignment(s), {len(result.expired)} expired"
