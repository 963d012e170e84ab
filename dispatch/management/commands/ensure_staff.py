# dispatch/management/commands/ensure_staff.py
from django.core.management.base import BaseCommand
from django.contrib.auth.hashers import make_password

from dispatch.models import TransporterStatus, User

STAFF_SET = [
    ("transporter1", "transporter", "FCC1"),
    ("transporter2", "transporter", "FCC4"),
    ("transporter3", "transporter", "FCC5"),
    ("dispatcher1", "dispatcher", None),
    ("supervisor1", "supervisor", None),
    ("manager1", "manager", None),
]


class Command(BaseCommand):
    help = "Ensure one demo account per role exists with a known password (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="changeme123", help="Password to set on every demo account.")

    def handle(self, *args, **opts):
        password = make_password(opts["password"])
        for username, role, floor in STAFF_SET:
            u, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "primary_floor": floor, "password": password, "is_active": True},
            )
            if not created:
                # reset password, role and active flag
                u.password = password
                u.role = role
                u.primary_floor = floor
                u.is_active = True
                u.save(update_fields=["password", "role", "primary_floor", "is_active"])
            TransporterStatus.objects.get_or_create(user=u)
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role})"))
        self.stdout.write(self.style.SUCCESS("All demo staff ensured."))
