from datetime import datetime, timedelta
import click

from lms_scheduler import db


def parse_month(value):
    """'YYYY-MM' to the first and last day of that month"""
    try:
        first = datetime.strptime(value, '%Y-%m').date()
    except ValueError:
        raise click.BadParameter('Month must be in YYYY-MM format')
    next_month = (first + timedelta(days=32)).replace(day=1)
    return first, next_month - timedelta(days=1)


def register_commands(app):
    """Register CLI commands for scheduler maintenance"""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables"""
        with app.app_context():
            import lms_scheduler.models  # noqa: F401
            db.create_all()
            print("✅ Database tables created")

    @app.cli.command('generate-billing')
    @click.option('--month', default=None, help='Billing month as YYYY-MM (default: current month)')
    @click.option('--actor-id', default=None, type=int, help='User id recorded as creator')
    def generate_billing_command(month, actor_id):
        """Create missing transactions for recurring classes in a month"""
        with app.app_context():
            from lms_scheduler.services.class_service import ClassRegistry

            registry = ClassRegistry()
            if month:
                period_start, period_end = parse_month(month)
            else:
                period_start, period_end = registry.reconciler.current_period()

            print(f"💳 Generating billing for {period_start} to {period_end}...")
            summary = registry.generate_period_billing(period_start, period_end, actor_id)
            print(f"✅ {summary['created']} transaction(s) created across {summary['classes']} class(es)")
            if summary['failed']:
                print(f"❌ Failed classes: {', '.join(str(i) for i in summary['failed'])}")
