"""
Management command to populate the database with demo transport data.

Requests are created and advanced through the lifecycle engine, so the
seeded data carries the same history rows and milestones as real traffic.
Run ``ensure_staff`` first.
"""
import random
from datetime import timedelta

from django.core.management import call_command
from django.core.management.base import BaseCommand
from django.utils import timezone

from dispatch.models import FLOOR_ROOM_RANGES, TransportRequest, User
from dispatch.services import lifecycle, transporters

R = TransportRequest

# status reached by each seeded request, in lifecycle order
PATH = [R.STATUS_ASSIGNED, R.STATUS_ACCEPTED, R.STATUS_EN_ROUTE, R.STATUS_WITH_PATIENT, R.STATUS_COMPLETE]


class Command(BaseCommand):
    help = 'Populate the database with demo transport requests'

    def add_arguments(self, parser):
        parser.add_argument('--completed', type=int, default=20, help='Number of completed requests.')
        parser.add_argument('--pending', type=int, default=3, help='Number of pending requests.')
        parser.add_argument('--seed', type=int, default=None)

    def handle(self, *args, **options):
        rng = random.Random(options['seed'])
        call_command('ensure_staff', stdout=self.stdout)
        dispatcher = User.objects.filter(role='dispatcher', is_active=True).first()
        crew = list(User.objects.filter(role='transporter', is_active=True))
        if dispatcher is None or not crew:
            self.stderr.write(self.style.ERROR('No dispatcher or transporters found'))
            return

        now = timezone.now()
        for i in range(options['completed']):
            start = now - timedelta(hours=rng.randint(1, 72), minutes=rng.randint(0, 59))
            req = lifecycle.create_request(dispatcher, self._payload(rng), now=start)
            t = start
            for target in PATH:
                t += timedelta(minutes=rng.randint(1, 12))
                assignee = rng.choice(crew) if target == R.STATUS_ASSIGNED else None
                actor = dispatcher if target == R.STATUS_ASSIGNED else req.assigned_to
                req = lifecycle.transition(req.pk, actor, target, assignee=assignee, now=t)
            self.stdout.write(f'completed request #{req.pk}')

        for _ in range(options['pending']):
            req = lifecycle.create_request(dispatcher, self._payload(rng))
            self.stdout.write(f'pending request #{req.pk}')

        for user in crew:
            transporters.mirror_active_job(user.id)
        self.stdout.write(self.style.SUCCESS('Demo transport data created.'))

    def _payload(self, rng):
        floor = rng.choice(sorted(FLOOR_ROOM_RANGES))
        low, high = FLOOR_ROOM_RANGES[floor]
        return {
            'origin_floor': floor,
            'room_number': str(rng.randint(low, high)),
            'patient_initials': ''.join(rng.choice('ABCDEFGHJKLMNPRSTW') for _ in range(2)),
            'priority': rng.choice([R.PRIORITY_ROUTINE] * 4 + [R.PRIORITY_STAT]),
            'special_needs': rng.sample(list(R.SPECIAL_NEEDS[:3]), rng.randint(0, 1)),
        }
