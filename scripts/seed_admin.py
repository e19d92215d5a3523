#!/usr/bin/env python3
"""
Promote a registered user to the global admin role.

Reads ADMIN_EMAIL from .env file.
Run from project root: python scripts/seed_admin.py
"""

import sys
import os

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

# Load .env file
from dotenv import load_dotenv
load_dotenv(os.path.join(project_root, ".env"))

from src.auth.permissions import ROLE_ADMIN
from src.db import get_supabase
from src.directory import OrganizationDirectory


def main():
    email = os.getenv("ADMIN_EMAIL")

    if not email:
        print("Error: ADMIN_EMAIL must be set in .env")
        sys.exit(1)

    directory = OrganizationDirectory(get_supabase())
    credentials = directory.get_credentials(email)
    if credentials is None:
        print(f"Error: no registered user with email '{email}'. Register first.")
        sys.exit(1)

    principal, _ = credentials
    if principal.role == ROLE_ADMIN:
        print(f"User '{email}' is already an admin.")
        sys.exit(0)

    updated = directory.set_global_role(principal.id, ROLE_ADMIN)
    if updated:
        print(f"Promoted to admin:")
        print(f"  ID: {updated.id}")
        print(f"  Email: {updated.email}")
    else:
        print("Error: Failed to update role")
        sys.exit(1)


if __name__ == "__main__":
    main()
