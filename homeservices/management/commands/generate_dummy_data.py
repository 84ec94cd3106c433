from django.contrib.auth.models import User
from django.core.management.base import BaseCommand

from homeservices.models import CustomerProfile, WorkerProfile


class Command(BaseCommand):
    help = 'Generate demo customers, workers and an admin for exploration.'

    def handle(self, *args, **options):
        admin_user, _ = User.objects.get_or_create(
            username='admin', defaults={'is_staff': True, 'is_superuser': True, 'email': 'admin@example.com'}
        )
        admin_user.set_password('password')
        admin_user.save()

        for idx in range(1, 4):
            customer_user, _ = User.objects.get_or_create(
                username=f'customer{idx}', defaults={'email': f'customer{idx}@example.com'}
            )
            customer_user.set_password('password')
            customer_user.save()
            CustomerProfile.objects.get_or_create(user=customer_user, defaults={'phone': f'900000000{idx}'})

        worker_services = [
            ['Plumbing', 'Electrical'],
            ['Cleaning'],
            ['Plumbing', 'Cleaning', 'Painting'],
        ]
        for idx, services in enumerate(worker_services, start=1):
            worker_user, _ = User.objects.get_or_create(username=f'worker{idx}')
            worker_user.set_password('password')
            worker_user.save()
            WorkerProfile.objects.get_or_create(
                user=worker_user,
                defaults={
                    'phone': f'800000000{idx}',
                    'services': services,
                    'is_verified': True,
                    'is_available': True,
                },
            )
        self.stdout.write(self.style.SUCCESS('Demo data generated.'))
