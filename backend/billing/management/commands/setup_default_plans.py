"""
Create the default plan catalog

This command creates the Free, Monthly and Yearly plans listed in BILLING_DEFAULT_PLANS
"""

from django.core.management.base import BaseCommand

from billing.apps import ensure_default_plans
from billing.models import Plan


class Command(BaseCommand):

    help = 'Create the default billing plans'

    def add_arguments(self, parser):
        parser.add_argument(
            '--update',
            action='store_true',
            help='Update existing plans to match settings'
        )

    def handle(self, *args, **options):
        update_existing = options['update']
        outcome = ensure_default_plans(update=update_existing)

        for plan_name in outcome['created']:
            self.stdout.write(self.style.SUCCESS(f'Created plan: {plan_name}'))
        for plan_name in outcome['updated']:
            self.stdout.write(self.style.SUCCESS(f'Updated plan: {plan_name}'))

        self.stdout.write('\n' + '=' * 50)
        self.stdout.write('Plan setup completed:')
        self.stdout.write(f'  Created: {len(outcome["created"])} plan(s)')
        if update_existing:
            self.stdout.write(f'  Updated: {len(outcome["updated"])} plan(s)')
        self.stdout.write(f'  Total: {Plan.objects.count()} plan(s)')

        self.stdout.write('\nCurrent plans:')
        for plan in Plan.objects.all().order_by('price', 'name'):
            price_display = f"{plan.price} {plan.currency.upper()}" if plan.price > 0 else "Free"
            status = "" if plan.is_active else " [inactive]"
            self.stdout.write(f"  {plan.name} ({plan.type}): {price_display}{status}")

        if not update_existing and not outcome['created']:
            self.stdout.write(
                self.style.WARNING('\nNote: All plans already exist. Use the --update flag to update existing plans.')
            )
