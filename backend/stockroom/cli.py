# Overview: Flask CLI command groups for bootstrap, seeding and user inspection.

# backend/stockroom/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default admin, manager and salesperson.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Load sample categories and products (runs init first).
#
# User inspection/bootstrap:
# - python -m flask users list [--role ADMIN]
#   List all users with role and active status.
# - python -m flask users create --email a@b.c --first-name Ann --last-name Lee --password "Password123!" --role MANAGER
#   Create a user (prompts if options are omitted).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Category, Product, User, USER_ROLES
from .services import get_services
from .services.auth_service import PasswordValidationError
from .validation import ConflictError

DEFAULT_PASSWORD = "Password123!"

DEFAULT_USERS = [
    ("admin@example.com", "Admin", "User", "ADMIN"),
    ("manager@example.com", "Manager", "User", "MANAGER"),
    ("sales@example.com", "Sales", "Person", "SALESPERSON"),
]

SAMPLE_CATEGORIES = [
    ("Electronics", "Electronic devices and accessories"),
    ("Clothing", "Apparel and fashion items"),
    ("Books", "Books and educational materials"),
    ("Home & Garden", "Home improvement and garden supplies"),
    ("Sports", "Sports equipment and accessories"),
]

# (sku, barcode, name, description, price_cents, cost_cents, quantity, min_stock, max_stock, category)
SAMPLE_PRODUCTS = [
    ("IPH15PRO001", "123456789012", "iPhone 15 Pro", "Latest Apple iPhone with advanced features", 99999, 75000, 25, 5, 100, "Electronics"),
    ("SGS24001", "123456789013", "Samsung Galaxy S24", "Premium Android smartphone", 89999, 65000, 30, 5, 100, "Electronics"),
    ("MBA15M3001", "123456789014", "MacBook Air M3", "Lightweight laptop with M3 chip", 129999, 95000, 15, 3, 50, "Electronics"),
    ("NAM270001", "123456789015", "Nike Air Max 270", "Comfortable running shoes", 14999, 7500, 50, 10, 200, "Clothing"),
    ("LEV501001", "123456789016", "Levi's 501 Jeans", "Classic straight-leg jeans", 8999, 4500, 40, 8, 150, "Clothing"),
    ("TGG001", "123456789017", "The Great Gatsby", "Classic American novel", 1299, 650, 100, 20, 500, "Books"),
    ("CMD001", "123456789018", "Coffee Maker Deluxe", "Programmable coffee maker with timer", 7999, 4000, 20, 5, 80, "Home & Garden"),
    ("YMP001", "123456789019", "Yoga Mat Premium", "Non-slip exercise mat", 3999, 2000, 35, 10, 150, "Sports"),
    # Below minimum stock, shows up in low-stock alerts
    ("WH001", "123456789020", "Wireless Headphones", "Bluetooth noise-canceling headphones", 19999, 12000, 8, 10, 100, "Electronics"),
    # Out of stock
    ("GMR001", "123456789021", "Gaming Mouse RGB", "High-precision gaming mouse with RGB lighting", 5999, 3000, 0, 5, 80, "Electronics"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


def _ensure_default_users() -> None:
    users = get_services().users
    for email, first_name, last_name, role in DEFAULT_USERS:
        if db.session.query(User.id).filter_by(email=email).first():
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            continue
        users.create_user(
            {"email": email, "first_name": first_name, "last_name": last_name, "role": role},
            DEFAULT_PASSWORD,
        )
        click.echo(f"PASS Created user: {email} with role '{role}'")


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize Stockroom: schema plus default users.

    Creates:
    - All tables (no-op for tables that already exist)
    - Users: admin@example.com, manager@example.com, sales@example.com
    - All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing Stockroom...")
    db.create_all()

    click.echo("\nUSERS Creating default users...")
    _ensure_default_users()

    click.echo("\n" + "=" * 60)
    click.echo("DONE Stockroom initialized")
    click.echo("=" * 60)
    click.echo("\nDefault users (CHANGE PASSWORDS IN PRODUCTION!):")
    for email, _, _, role in DEFAULT_USERS:
        click.echo(f"   {role:<12} -> {email:<22} / {DEFAULT_PASSWORD}")
    click.echo("")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@system_group.command('seed')
@with_appcontext
def seed_data():
    """
    Load sample categories and products. Existing names / SKUs are left alone.

    Starting quantities go through the catalog, so each gets an "Initial stock"
    movement in the ledger.
    """
    db.create_all()
    _ensure_default_users()

    services = get_services()
    admin = db.session.query(User).filter_by(role="ADMIN").order_by(User.id).first()

    category_ids = {}
    for name, description in SAMPLE_CATEGORIES:
        category = db.session.query(Category).filter_by(name=name).first()
        if category is None:
            category = services.categories.create_category({"name": name, "description": description})
            click.echo(f"PASS Created category: {name}")
        category_ids[name] = category.id

    created = 0
    for sku, barcode, name, description, price, cost, quantity, min_stock, max_stock, category in SAMPLE_PRODUCTS:
        if db.session.query(Product.id).filter_by(sku=sku).first():
            continue
        try:
            services.catalog.create_product(
                {
                    "sku": sku,
                    "barcode": barcode,
                    "name": name,
                    "description": description,
                    "price_cents": price,
                    "cost_cents": cost,
                    "quantity": quantity,
                    "min_stock": min_stock,
                    "max_stock": max_stock,
                    "category_id": category_ids[category],
                },
                actor_user_id=admin.id if admin else None,
            )
            created += 1
        except ConflictError as e:
            click.echo(f"WARN  Skipping {sku}: {e}")

    click.echo(f"PASS Seed complete: {created} product(s) created")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--first-name', prompt=True, help='First name')
@click.option('--last-name', prompt=True, help='Last name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(USER_ROLES), default='SALESPERSON', show_default=True, help='Role')
@with_appcontext
def create_user_cli(email, first_name, last_name, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    """
    try:
        user = get_services().users.create_user(
            {"email": email.strip().lower(), "first_name": first_name, "last_name": last_name, "role": role},
            password,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        return
    except ConflictError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role '{user.role}'")


@users_group.command('list')
@click.option('--role', type=click.Choice(USER_ROLES), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Email':<32} {'Name':<28} {'Role':<12} {'Active'}")
    click.echo("=" * 90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<32} {user.full_name:<28} {user.role:<12} {active_str}")

    click.echo("=" * 90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
