#!/usr/bin/env python3
"""
Database management script for deployment.

Applies migrations, then makes sure the bootstrap admin exists when
ADMIN_EMAIL and ADMIN_PASSWORD are set. Role changes need an admin, so
the first one has to come from here.
"""
import os
import sys

# Add current directory to path so we can import registry
sys.path.append(os.getcwd())

from flask_migrate import upgrade

from registry.app import create_app
from shared.errors import RegistrationError


def deploy(app=None):
    """Run deployment tasks. Returns the bootstrap admin, if one was configured."""
    print("Starting database migration...")
    if app is None:
        # The schema comes from the migrations, not create_all
        app = create_app(create_tables=False)

    with app.app_context():
        try:
            upgrade(directory=app.config['MIGRATIONS_DIR'])
            print("Database migrations applied.")
        except Exception as e:
            print(f"Error applying migrations: {e}")
            sys.exit(1)

        email = os.getenv('ADMIN_EMAIL')
        password = os.getenv('ADMIN_PASSWORD')
        if not (email and password):
            print("ADMIN_EMAIL/ADMIN_PASSWORD not set, skipping admin bootstrap.")
            return None

        try:
            admin = app.accounts.ensure_admin(email, password)
        except RegistrationError as e:
            print(f"Error creating admin account: {e.message}")
            sys.exit(1)
        print(f"Admin account ready: {admin.email} (id {admin.id})")
        return admin


if __name__ == '__main__':
    deploy()
