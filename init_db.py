"""
Database Initialization Script
Run this script to create all database tables and seed initial data
"""
import os
import sys
import logging

from models import db, Company, User, UserRole, Player, PlayerGroup

logger = logging.getLogger(__name__)


def init_database(app, reset=False):
    """
    Create tables, the default company and the default admin user

    Args:
        app: Flask application
        reset (bool): Drop existing tables first
    """
    with app.app_context():
        if reset:
            logger.warning("Dropping existing tables...")
            db.drop_all()

        db.create_all()

        company = Company.query.order_by(Company.id).first()
        if company is None:
            company = Company(name=app.config['DEFAULT_COMPANY_NAME'])
            db.session.add(company)
            db.session.flush()

        admin = User.query.filter_by(username=app.config['ADMIN_USERNAME']).first()
        if admin is None:
            admin = User(
                company_id=company.id,
                username=app.config['ADMIN_USERNAME'],
                role=UserRole.ADMIN
            )
            admin.set_password(app.config['ADMIN_PASSWORD'])
            db.session.add(admin)
            logger.info(f"Created default admin user: {admin.username}")

        # Sample player for development
        if os.getenv('FLASK_ENV') == 'development' and Player.query.count() == 0:
            group = PlayerGroup(company_id=company.id, name='Lobby screens')
            db.session.add(group)
            db.session.flush()
            device_key = Player.generate_device_key()
            db.session.add(Player(
                company_id=company.id,
                group_id=group.id,
                name='Lobby 1',
                device_key_hash=Player.hash_device_key(device_key)
            ))
            print(f"  Sample player device key: {device_key}")

        db.session.commit()


if __name__ == '__main__':
    from app import create_app

    reset = '--reset' in sys.argv
    if reset:
        confirm = input("This will delete all existing data. Continue? (yes/no): ")
        if confirm.lower() != 'yes':
            print("Database initialization cancelled.")
            sys.exit(0)

    application = create_app()
    init_database(application, reset=reset)

    print("\n" + "=" * 50)
    print("Database initialized successfully!")
    print("=" * 50)
    print("\nAdmin credentials:")
    print(f"  Username: {application.config['ADMIN_USERNAME']}")
    print(f"  Password: {application.config['ADMIN_PASSWORD']}")
    print("\nIMPORTANT: Change the default password after first login!")
    print("=" * 50 + "\n")
