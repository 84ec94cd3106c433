from django.core.management.base import BaseCommand

from homeservices.ledger import recompute_worker_stats
from homeservices.models import WorkerProfile


class Command(BaseCommand):
    help = 'Rebuild worker earnings, booking counters and rating aggregates from bookings.'

    def handle(self, *args, **options):
        for worker in WorkerProfile.objects.select_related('user'):
            recompute_worker_stats(worker.pk)
            worker.recalc_ratings()
            self.stdout.write(self.style.SUCCESS(f'Updated {worker.user.username}'))
