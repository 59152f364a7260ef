"""
Seed demo data for local development.
Creates the HSE checklist, 3 contractors with logins, requirements and
submissions at various stages.
Run: python -m scripts.seed_demo_data
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.logging import setup_logging
from app.db.seed import (
    CONTRACTORS, DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD, DEMO_CONTRACTOR_PASSWORD,
    seed_demo_data
)


def main():
    setup_logging()
    result = seed_demo_data()

    if result.get("skipped"):
        print("✓ Demo data already present. Nothing to do.")
        return

    print(f"✅ Created {result['contractors']} contractors, "
          f"{result['requirements']} requirements, {result['submissions']} submissions")
    print("\n📋 Demo logins:")
    print(f"   Admin:      {DEMO_ADMIN_EMAIL} / {DEMO_ADMIN_PASSWORD}")
    for name, email in CONTRACTORS:
        print(f"   Contractor: {email} / {DEMO_CONTRACTOR_PASSWORD} ({name})")


if __name__ == "__main__":
    main()
