#!/usr/bin/env python
"""
Sample Chat Users Script

Creates one trainer with two assigned clients (plus an unassigned client) and
prints a bearer token for each, for trying the chat gateway locally.

Usage:
    python create_sample_users.py
"""

import sys
import os

# Add the app directory to the path
sys.path.insert(0, os.path.dirname(__file__))

from coachchat import create_app, db
from coachchat.models.user import User, ROLE_CLIENT, ROLE_TRAINER
from coachchat.utils.tokens import create_access_token


SAMPLE_USERS = [
    {'email': 'trainer@example.com', 'first_name': 'Tara', 'last_name': 'Trainer', 'role': ROLE_TRAINER},
    {'email': 'client1@example.com', 'first_name': 'Carlos', 'last_name': 'Client', 'role': ROLE_CLIENT},
    {'email': 'client2@example.com', 'first_name': 'Chloe', 'last_name': 'Client', 'role': ROLE_CLIENT},
    {'email': 'unassigned@example.com', 'first_name': 'Uma', 'last_name': 'Unassigned', 'role': ROLE_CLIENT},
]


def create_sample_users():
    """Create the sample users if missing and print their tokens"""
    app = create_app(os.getenv('FLASK_ENV', 'development'))

    with app.app_context():
        db.create_all()

        users = {}
        for data in SAMPLE_USERS:
            user = User.query.filter_by(email=data['email']).first()
            if not user:
                user = User(**data)
                db.session.add(user)
                print(f"✅ Created {data['role']} {data['email']}")
            else:
                print(f"ℹ️  {data['email']} already exists")
            users[data['email']] = user
        db.session.flush()

        trainer = users['trainer@example.com']
        for email in ('client1@example.com', 'client2@example.com'):
            users[email].trainer_id = trainer.id
        db.session.commit()

        print("\nBearer tokens:")
        for email, user in users.items():
            print(f"  {email} (id={user.id}): {create_access_token(user)}")


if __name__ == '__main__':
    create_sample_users()
