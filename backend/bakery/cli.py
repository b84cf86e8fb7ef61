# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/bakery/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <command> [options]
#
# Database:
# - python -m flask db-init
#   Create all tables (development; use "flask db upgrade" for migrations).
# - python -m flask seed
#   Idempotent demo data: categories, products and an admin employee.
#
# Employees:
# - python -m flask employees list
#   List employees with role, status and lockout state.
# - python -m flask employees create --username admin --email admin@bakery.local --password "Password123!" --role admin
#   Create an employee (prompts if options are omitted).
# - python -m flask employees unlock admin
#   Clear the failed-login counter and lock of an employee.
#
# Products:
# - python -m flask products list
#   List products with stock levels.
# - python -m flask products create --code PAN-001 --name "Pan blanco" --price 12.50 --cost 6 --stock 40 --min-stock 10
#   Create a product with its opening stock.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import BakeryError
from .extensions import db
from .models import Employee, Product
from .services import build_services
from .services.auth_service import create_employee, unlock_employee


def _services():
    return build_services(current_app._get_current_object())


@click.command('db-init')
@with_appcontext
def db_init():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Database tables created")


# =============================================================================
# EMPLOYEES
# =============================================================================

@click.group('employees')
def employees_group():
    """Employee bootstrap and lockout commands."""


@employees_group.command('list')
@with_appcontext
def list_employees():
    employees = db.session.query(Employee).order_by(Employee.id).all()
    if not employees:
        click.echo("No employees found.")
        return
    for e in employees:
        lock = f" locked_until={e.locked_until:%Y-%m-%d %H:%M}" if e.locked_until else ""
        click.echo(
            f"{e.id:>4}  {e.username:<20} {e.email:<32} {e.role:<8} {e.status:<8} "
            f"failed={e.failed_login_count}{lock}"
        )


@employees_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', default='cashier', show_default=True,
              type=click.Choice(['admin', 'manager', 'cashier', 'vendor', 'baker']))
@click.option('--first-name', default='')
@click.option('--last-name', default='')
@with_appcontext
def create_employee_command(username, email, password, role, first_name, last_name):
    services = _services()
    try:
        employee = create_employee(
            services.gateway,
            services.auth.hasher,
            username=username,
            email=email,
            password=password,
            role=role,
            first_name=first_name,
            last_name=last_name,
            min_password_length=current_app.config["PASSWORD_MIN_LENGTH"],
        )
    except BakeryError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created employee: {employee.username} ({employee.email}) with role '{employee.role}'")


@employees_group.command('unlock')
@click.argument('username')
@with_appcontext
def unlock_employee_command(username):
    try:
        employee = unlock_employee(_services().gateway, username)
    except BakeryError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Unlocked employee: {employee.username}")


# =============================================================================
# PRODUCTS
# =============================================================================

@click.group('products')
def products_group():
    """Product bootstrap commands."""


@products_group.command('list')
@with_appcontext
def list_products():
    products = db.session.query(Product).order_by(Product.code).all()
    if not products:
        click.echo("No products found.")
        return
    for p in products:
        click.echo(
            f"{p.id:>4}  {p.code:<12} {p.name:<30} price={p.price:.2f} "
            f"stock={p.current_stock} min={p.min_stock} {p.status}"
        )


@products_group.command('create')
@click.option('--code', prompt=True)
@click.option('--name', prompt=True)
@click.option('--price', prompt=True)
@click.option('--cost', default='0')
@click.option('--stock', default=0, type=int, help='Opening stock')
@click.option('--min-stock', default=0, type=int)
@click.option('--unit', default='unidad')
@click.option('--category', 'category_name', default=None, help='Category name (created if missing)')
@with_appcontext
def create_product_command(code, name, price, cost, stock, min_stock, unit, category_name):
    catalog = _services().catalog
    try:
        category_id = catalog.create_category(category_name).id if category_name else None
        product = catalog.create(
            code=code,
            name=name,
            price=price,
            cost=cost,
            current_stock=stock,
            min_stock=min_stock,
            unit=unit,
            category_id=category_id,
        )
    except BakeryError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created product: {product.code} {product.name} (stock {product.current_stock})")


# =============================================================================
# DEMO DATA
# =============================================================================

DEMO_CATEGORIES = ("Panes", "Pasteles", "Galletas", "Bebidas")

DEMO_PRODUCTS = [
    # code, name, category, price, cost, stock, min_stock
    ("PAN-001", "Pan blanco", "Panes", "12.50", "6.00", 40, 10),
    ("PAN-002", "Pan integral", "Panes", "15.00", "7.50", 25, 10),
    ("PAS-001", "Pastel de chocolate", "Pasteles", "250.00", "120.00", 5, 2),
    ("GAL-001", "Galletas de avena", "Galletas", "35.00", "15.00", 3, 8),
    ("BEB-001", "Café americano", "Bebidas", "25.00", "8.00", 0, 5),
]


@click.command('seed')
@click.option('--admin-password', default='Password123!', show_default=True)
@with_appcontext
def seed(admin_password):
    """
    Idempotent demo data.

    SECURITY: Change the admin password immediately outside development!
    """
    services = _services()
    click.echo("START Seeding demo data...")

    categories = {name: services.catalog.create_category(name) for name in DEMO_CATEGORIES}
    click.echo(f"PASS Categories: {', '.join(categories)}")

    for code, name, category, price, cost, stock, min_stock in DEMO_PRODUCTS:
        if db.session.query(Product.id).filter(Product.code == code).first():
            click.echo(f"WARN  Product '{code}' already exists, skipping...")
            continue
        services.catalog.create(
            code=code,
            name=name,
            price=price,
            cost=cost,
            current_stock=stock,
            min_stock=min_stock,
            category_id=categories[category].id,
        )
        click.echo(f"PASS Created product: {code} {name}")

    if db.session.query(Employee.id).filter(Employee.username == "admin").first():
        click.echo("WARN  Employee 'admin' already exists, skipping...")
    else:
        try:
            create_employee(
                services.gateway,
                services.auth.hasher,
                username="admin",
                email="admin@bakery.local",
                password=admin_password,
                role="admin",
                first_name="Admin",
                min_password_length=current_app.config["PASSWORD_MIN_LENGTH"],
            )
        except BakeryError as e:
            raise click.ClickException(e.message)
        click.echo("PASS Created employee: admin (admin@bakery.local)")

    click.echo("DONE Demo data ready")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(db_init)
    app.cli.add_command(seed)
    app.cli.add_command(employees_group)
    app.cli.add_command(products_group)
