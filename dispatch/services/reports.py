"""Reporting over completed transport requests.  Durations are in minutes."""
from __future__ import annotations

from collections import defaultdict
from datetime import timedelta
from typing import Any, Iterable, Optional

from django.utils import timezone

from dispatch.models import TransportRequest
from dispatch.services import config

R = TransportRequest

# name -> (start milestone, end milestone)
DURATIONS = {
    'response': ('created_at', 'accepted_at'),
    'pickup': ('created_at', 'with_patient_at'),
    'transport': ('with_patient_at', 'completed_at'),
    'cycle': ('created_at', 'completed_at'),
}

_FIELDS = ('id', 'origin_floor', 'assigned_to_id', 'created_at', 'accepted_at',
           'with_patient_at', 'completed_at')


def completed(*, start=None, end=None, floor: Optional[str] = None, transporter_id: Optional[int] = None,
              shift_start: Optional[int] = None, shift_end: Optional[int] = None):
    qs = R.objects.filter(status=R.STATUS_COMPLETE)
    if start:
        qs = qs.filter(created_at__gte=start)
    if end:
        qs = qs.filter(created_at__lte=end)
    if floor:
        qs = qs.filter(origin_floor=floor)
    if transporter_id:
        qs = qs.filter(assigned_to_id=transporter_id)
    if shift_start is not None and shift_end is not None:
        qs = qs.filter(created_at__hour__gte=shift_start, created_at__hour__lt=shift_end)
    return qs


def _avg_minutes(rows: Iterable[dict], start_field: str, end_field: str) -> float:
    spans = [(r[end_field] - r[start_field]).total_seconds()
             for r in rows if r[start_field] and r[end_field]]
    if not spans:
        return 0.0
    return round(sum(spans) / len(spans) / 60, 2)


def _averages(rows: list[dict]) -> dict[str, float]:
    return {f'avg_{name}_time_minutes': _avg_minutes(rows, *fields) for name, fields in DURATIONS.items()}


def summary(**filters) -> dict[str, Any]:
    """Totals and average phase durations; ``timeout_rate`` is the share (%) accepted late."""
    rows = list(completed(**filters).values(*_FIELDS))
    limit = timedelta(minutes=config.get_alert_timing()['pending_timeout_minutes'])
    accepted = [r for r in rows if r['accepted_at']]
    late = sum(1 for r in accepted if r['accepted_at'] - r['created_at'] > limit)
    return {
        'total_completed': len(rows),
        **_averages(rows),
        'timeout_rate': round(late / len(accepted) * 100, 2) if accepted else 0.0,
    }


def by_transporter(**filters) -> list[dict[str, Any]]:
    qs = (completed(**filters)
          .filter(assigned_to__isnull=False, assigned_to__include_in_analytics=True)
          .values(*_FIELDS, 'assigned_to__username', 'assigned_to__first_name', 'assigned_to__last_name'))
    grouped: dict[int, list[dict]] = defaultdict(list)
    for row in qs:
        grouped[row['assigned_to_id']].append(row)
    data = []
    for user_id, rows in grouped.items():
        first = rows[0]
        data.append({
            'user_id': user_id,
            'username': first['assigned_to__username'],
            'first_name': first['assigned_to__first_name'],
            'last_name': first['assigned_to__last_name'],
            'jobs_completed': len(rows),
            'avg_pickup_time_minutes': _avg_minutes(rows, *DURATIONS['pickup']),
            'avg_transport_time_minutes': _avg_minutes(rows, *DURATIONS['transport']),
        })
    data.sort(key=lambda d: (-d['jobs_completed'], d['user_id']))
    return data


def by_floor(**filters) -> list[dict[str, Any]]:
    grouped: dict[str, list[dict]] = defaultdict(list)
    for row in completed(**filters).values(*_FIELDS):
        grouped[row['origin_floor']].append(row)
    return [{'floor': floor, 'count': len(rows), **_averages(rows)} for floor, rows in sorted(grouped.items())]


def by_hour(**filters) -> list[dict[str, Any]]:
    counts: dict[int, int] = defaultdict(int)
    for created in completed(**filters).values_list('created_at', flat=True):
        counts[timezone.localtime(created).hour] += 1
    return [{'hour': hour, 'count': counts[hour]} for hour in sorted(counts)]
