import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from werkzeug.middleware.proxy_fix import ProxyFix
from config import config

db = SQLAlchemy()


def create_app(config_name='default'):
    """Application factory — creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # ── Logging ───────────────────────────────────────────────────
    from pos.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)

    # ── Blueprints ────────────────────────────────────────────────
    from pos.main import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from pos.auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint, url_prefix='/auth')

    from pos.billing import billing as billing_blueprint
    app.register_blueprint(billing_blueprint, url_prefix='/billing')

    from pos.inventory import inventory as inventory_blueprint
    app.register_blueprint(inventory_blueprint, url_prefix='/inventory')

    from pos.customers import customers as customers_blueprint
    app.register_blueprint(customers_blueprint, url_prefix='/customers')

    # ── Error Handlers ────────────────────────────────────────────
    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({'error': e.description or 'Bad request.'}), 400

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({'error': 'Access denied.'}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'Not found.'}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({'error': 'Method not allowed.'}), 405

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({'error': 'Server error.'}), 500

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    # HTTPS is terminated by the platform's proxy
    if not app.debug and not app.testing:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    return app


def _create_user(name, username, password, role):
    from pos.auth.models import User

    if User.query.filter_by(username=username).first():
        click.echo(f'⚠️  User "{username}" already exists.')
        return None

    user = User(name=name, username=username, role=role)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    click.echo(f'✅  User "{username}" ({role.value}) created successfully.')
    return user


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables and seed the invoice sequence for this year."""
        from datetime import date
        from pos.billing.models import InvoiceSequence

        db.create_all()
        click.echo('✅  Database tables created.')

        year = date.today().year
        if not db.session.get(InvoiceSequence, year):
            db.session.add(InvoiceSequence(year=year, last_seq=0))
            db.session.commit()
            click.echo(f'✅  Invoice sequence seeded for {year} (starts at 0).')
        else:
            click.echo(f'ℹ️   Invoice sequence for {year} already exists.')

    @app.cli.command('seed-admin')
    @click.option('--name',     prompt='Full name',  help='Admin full name')
    @click.option('--username', prompt='Username',   help='Admin username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Admin password')
    def seed_admin(name, username, password):
        """Create the initial admin user."""
        from pos.auth.models import RoleEnum
        _create_user(name, username, password, RoleEnum.admin)

    @app.cli.command('seed-cashier')
    @click.option('--name',     prompt='Full name',  help='Cashier full name')
    @click.option('--username', prompt='Username',   help='Cashier username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Cashier password')
    def seed_cashier(name, username, password):
        """Create a cashier user."""
        from pos.auth.models import RoleEnum
        _create_user(name, username, password, RoleEnum.cashier)

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate the database with demo users and catalog."""
        from decimal import Decimal
        from pos.auth.models import User, RoleEnum
        from pos.inventory.models import Product, InventoryLog
        from pos.customers.models import Customer

        click.echo("🌱 Seeding demo data...")
        db.create_all()

        if not User.query.filter_by(username='admin').first():
            _create_user('Admin User', 'admin', 'demo123', RoleEnum.admin)
        if not User.query.filter_by(username='cajero1').first():
            _create_user('Cajero Uno', 'cajero1', '123', RoleEnum.cashier)

        catalog = [
            ('Funda iPhone 13',          'FND-IP13',   '100000', '85000',  12),
            ('Protector de pantalla A54', 'PRT-A54',   '35000',  '25000',  40),
            ('Cargador USB-C 20W',       'CRG-USBC20', '150000', '130000', 8),
            ('Cable Lightning 1m',       'CBL-LTG1',   '60000',  None,     25),
            ('Batería Samsung A12',      'BAT-A12',    '220000', None,     3),
        ]
        added = 0
        for name, sku, price, wholesale, stock in catalog:
            if Product.query.filter_by(sku=sku).first():
                continue
            p = Product(name=name, sku=sku, price=Decimal(price), stock=stock,
                        wholesale_price=Decimal(wholesale) if wholesale else None)
            db.session.add(p)
            db.session.flush()
            db.session.add(InventoryLog(product_id=p.id, old_stock=0, new_stock=stock,
                                        reason="Initial Demo Stock"))
            added += 1
        if not Customer.query.filter_by(phone='0981123456').first():
            db.session.add(Customer(name='Taller Benítez', phone='0981123456',
                                    discount_percent=Decimal('5')))
        db.session.commit()

        click.echo(f"✅ {added} products seeded.")
        click.echo("✅ Demo seed complete (admin/demo123, cajero1/123).")
