# Overview: Flask CLI command groups for bootstrap, scheduled jobs and maintenance.

# backend/checkout_tracker/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--org "Org Name"] [--org-code ACME]
#   Idempotent bootstrap: default org, roles, permissions and users.
#
# Organizations:
# - python -m flask orgs list
# - python -m flask orgs create --name "Acme Corp" --code "ACME"
#
# Users:
# - python -m flask users create --org-id 1 --username jdoe --email jdoe@example.com --password "Password123!" --role user
#
# Scheduled jobs (cron or a task scheduler):
# - python -m flask transactions flag-overdue
# - python -m flask transactions send-reminders [--within-hours 24] [--overdue-every-hours 24]
# - python -m flask notifications dispatch [--limit 100]
# - python -m flask notifications deliver-scheduled
# - python -m flask notifications retry-failed [--max-attempts 3]
# - python -m flask notifications purge-expired
#
# Consistency:
# - python -m flask inventory audit-reservations [--org-id 1]

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .errors import TrackerError
from .extensions import db
from .models import Organization, User
from .permissions import DEFAULT_ROLES, ROLE_ADMIN, ROLE_MANAGER, ROLE_USER
from .services.auth_service import create_user, create_default_roles
from .services import inventory_service, notification_service, overdue_service, permission_service


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@with_appcontext
def init_system(org_name, org_code):
    """
    Initialize the tracker: organization, roles, permissions and default users.

    Default users: admin, manager, user (password "Password123!").
    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing Inventory Tracker...")

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    click.echo("\nLIST Creating roles...")
    roles = create_default_roles(org.id)
    click.echo(f"PASS Roles: {', '.join(r.name for r in roles)}")

    click.echo("\nSECURITY Initializing permissions...")
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions(org.id)
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")

    click.echo("\nUSERS Creating default users...")
    default_password = "Password123!"
    domain = (org.code or "tracker").lower()

    for role_name, _ in DEFAULT_ROLES:
        username = role_name
        existing = db.session.query(User).filter_by(org_id=org.id, username=username).first()
        if existing:
            click.echo(f"WARN  User '{username}' already exists in org, skipping...")
            continue
        try:
            create_user(
                username=username,
                email=f"{username}@{domain}.local",
                password=default_password,
                org_id=org.id,
                role_name=role_name,
            )
            click.echo(f"PASS Created user: {username} with role '{role_name}'")
        except TrackerError as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{username}': {e.message}")

    click.echo("\n" + "=" * 60)
    click.echo("DONE Inventory Tracker Initialized")
    click.echo("=" * 60)
    click.echo(f"\nOrganization: {org.name} (ID: {org.id}, Code: {org.code})")
    click.echo(f"Default password for all users: {default_password} (CHANGE IN PRODUCTION!)\n")


# =============================================================================
# ORGANIZATIONS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    orgs = db.session.query(Organization).order_by(Organization.id).all()
    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Users'}")
    for org in orgs:
        user_count = db.session.query(User).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {user_count}")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create an organization with its default roles."""
    if db.session.query(Organization).filter_by(code=code).first():
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()

    create_default_roles(org.id)
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions(org.id)
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, help='Organization ID (uses the first organization if omitted)')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', default=None, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([ROLE_ADMIN, ROLE_MANAGER, ROLE_USER]), default=ROLE_USER, show_default=True)
@with_appcontext
def create_user_cli(org_id, username, email, name, password, role):
    """
    Create a user.

    Password must have 8+ characters with an uppercase letter, a lowercase
    letter, a digit and a special character.
    """
    if org_id:
        org = db.session.get(Organization, org_id)
    else:
        org = db.session.query(Organization).order_by(Organization.id).first()
    if not org:
        click.echo("FAIL Organization not found. Run 'python -m flask system init' first.")
        return

    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            org_id=org.id,
            name=name,
            role_name=role,
        )
    except TrackerError as e:
        db.session.rollback()
        click.echo(f"FAIL Failed to create user: {e.message}")
        return

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{role}'")
    click.echo(f"     Organization: {org.name} (ID: {org.id})")


# =============================================================================
# TRANSACTIONS (scheduled)
# =============================================================================

@click.group('transactions')
def transactions_group():
    """Overdue sweep and reminders."""


@transactions_group.command('flag-overdue')
@click.option('--org-id', type=int, default=None, help='Limit to one organization')
@with_appcontext
def flag_overdue_cli(org_id):
    count = overdue_service.flag_overdue_transactions(org_id=org_id)
    click.echo(f"Flagged {count} transaction(s) as overdue.")


@transactions_group.command('send-reminders')
@click.option('--org-id', type=int, default=None, help='Limit to one organization')
@click.option('--within-hours', type=int, default=24, show_default=True,
              help='Remind borrowers whose return is due within this window')
@click.option('--overdue-every-hours', type=int, default=24, show_default=True,
              help='Minimum hours between overdue alerts for the same transaction')
@with_appcontext
def send_reminders_cli(org_id, within_hours, overdue_every_hours):
    """Queue overdue alerts and upcoming-return reminders, then deliver them."""
    overdue = overdue_service.send_overdue_reminders(org_id=org_id, within=timedelta(hours=overdue_every_hours))
    upcoming = overdue_service.send_return_reminders(org_id=org_id, within=timedelta(hours=within_hours))
    summary = notification_service.dispatch_pending_events()
    click.echo(f"Queued {overdue} overdue alert(s) and {upcoming} return reminder(s).")
    click.echo(f"Dispatched {summary['notifications']} notification(s), {summary['emails_failed']} email failure(s).")


# =============================================================================
# NOTIFICATIONS
# =============================================================================

@click.group('notifications')
def notifications_group():
    """Notification outbox commands."""


@notifications_group.command('dispatch')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def dispatch_cli(limit):
    summary = notification_service.dispatch_pending_events(limit=limit)
    click.echo(
        f"Events: {summary['events']}  Notifications: {summary['notifications']}  "
        f"Emails sent: {summary['emails_sent']}  Emails failed: {summary['emails_failed']}  "
        f"Skipped: {summary['skipped']}"
    )


@notifications_group.command('deliver-scheduled')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def deliver_scheduled_cli(limit):
    """Deliver notifications whose scheduled time has arrived."""
    summary = notification_service.deliver_scheduled(limit=limit)
    click.echo(
        f"Notifications: {summary['notifications']}  "
        f"Emails sent: {summary['emails_sent']}  Emails failed: {summary['emails_failed']}"
    )


@notifications_group.command('retry-failed')
@click.option('--max-attempts', type=int, default=None, help='Defaults to EMAIL_MAX_ATTEMPTS')
@with_appcontext
def retry_failed_cli(max_attempts):
    summary = notification_service.retry_failed_email_channels(max_attempts=max_attempts)
    click.echo(f"Retried: {summary['retried']}  Sent: {summary['sent']}  Failed: {summary['failed']}")


@notifications_group.command('purge-expired')
@with_appcontext
def purge_expired_cli():
    deleted = notification_service.purge_expired()
    click.echo(
        f"Deleted {deleted['notifications']} expired notification(s) "
        f"and {deleted['events']} finished outbox event(s)."
    )


# =============================================================================
# INVENTORY
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Inventory consistency commands."""


@inventory_group.command('audit-reservations')
@click.option('--org-id', type=int, default=None, help='Audit one organization (default: all)')
@with_appcontext
def audit_reservations_cli(org_id):
    """Report items whose reserved quantity disagrees with open transactions."""
    query = db.session.query(Organization).order_by(Organization.id)
    if org_id:
        query = query.filter(Organization.id == org_id)

    problem_count = 0
    for org in query.all():
        for problem in inventory_service.audit_reservations(org.id):
            problem_count += 1
            click.echo(
                f"FAIL org={org.id} item={problem['item_id']} ({problem['name']}): "
                f"total={problem['total_quantity']} available={problem['available_quantity']} "
                f"reserved={problem['reserved_quantity']} held={problem['held_by_transactions']} "
                f"issues={','.join(problem['issues'])}"
            )

    if problem_count:
        click.get_current_context().exit(1)
    click.echo("PASS Reserved quantities match open transactions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(transactions_group)
    app.cli.add_command(notifications_group)
    app.cli.add_command(inventory_group)
