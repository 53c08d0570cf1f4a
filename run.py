#!/usr/bin/env python3
"""
Entry point for the Tournament Registration service.

Usage:
    python run.py

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 5000)
    DATABASE_URL: SQLAlchemy database URL
    JWT_SECRET: Signing secret for bearer tokens
    REDIS_URL: Redis used for domain events
"""
import os


def run_registry():
    """Run the registry service."""
    from registry.app import create_app

    app = create_app()
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print(f"Starting Registry on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=debug)


if __name__ == '__main__':
    run_registry()
