"""
Create (or reuse) an admin user and print a bearer token for local use.

Usage:
    python scripts/create_admin.py [--username admin] [--ttl 86400]
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from workhub.auth.security import create_access_token
from workhub.config import settings
from workhub.db import Base, SessionLocal, engine
from workhub.models.models import User


def create_admin(username: str, ttl_seconds: int) -> str:
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.username == username).first()
        if user is None:
            user = User(username=username, first_name="Admin", role="admin")
            db.add(user)
            db.commit()
            db.refresh(user)
            print(f"Created admin user '{username}' ({user.id})")
        elif not user.is_admin:
            user.role = "admin"
            user.row_version = user.row_version + 1
            db.commit()
            print(f"Promoted '{username}' to admin")
        else:
            print(f"Reusing admin user '{username}' ({user.id})")
        return create_access_token(str(user.id), ttl_seconds)
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create an admin user and print a bearer token")
    parser.add_argument("--username", default="admin")
    parser.add_argument("--ttl", type=int, default=24 * 60 * 60, help="token lifetime in seconds")
    args = parser.parse_args()
    print(create_admin(args.username, args.ttl))
