"""
Seed the local database with demo employees and inventory.

Usage:
  python scripts/seed_demo_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for users, name + department for
inventory items). Prints a bearer token per user for trying the API.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from printhub.auth.security import create_access_token  # noqa: E402
from printhub.db import Base, SessionLocal, engine  # noqa: E402
from printhub.models.enums import Department, UserRole  # noqa: E402
from printhub.models.models import InventoryItem, User  # noqa: E402
from printhub.services import inventory_ledger  # noqa: E402

USERS = [
    ("ceo@printhub.local", "Faisal Al-Harbi", UserRole.ceo, Department.management, True),
    ("sales.head@printhub.local", "Noura Al-Qahtani", UserRole.sales_head, Department.sales, True),
    ("sales@printhub.local", "Omar Al-Shehri", UserRole.sales, Department.sales, False),
    ("design.head@printhub.local", "Sara Al-Mutairi", UserRole.design_head, Department.design, True),
    ("design@printhub.local", "Khalid Al-Dosari", UserRole.design, Department.design, False),
    ("printing.head@printhub.local", "Abdullah Al-Ghamdi", UserRole.printing_head, Department.printing, True),
    ("printing@printhub.local", "Yousef Al-Zahrani", UserRole.printing, Department.printing, False),
    ("accounting@printhub.local", "Reem Al-Otaibi", UserRole.accounting, Department.accounting, False),
    ("dispatch@printhub.local", "Majed Al-Anazi", UserRole.dispatch, Department.dispatch, False),
]

INVENTORY = [
    # name, category, department, unit, quantity, min_quantity
    ("Paper A4 80gsm", "paper", Department.printing, "ream", 50, 10),
    ("Paper A3 120gsm", "paper", Department.printing, "ream", 20, 5),
    ("Offset plate 72x102", "plates", Department.printing, "plate", 40, 10),
    ("Cyan ink", "ink", Department.printing, "kg", 8, 2),
    ("Vinyl roll 1.5m", "vinyl", Department.printing, "roll", 3, 2),
    ("Business card stock", "paper", Department.printing, "pack", 0, 5),
]


def ensure_user(session, email: str, name: str, role: UserRole, department: Department, is_head: bool) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user is None:
        user = User(email=email)
        session.add(user)
    user.display_name = name
    user.role = role.value
    user.department = department.value
    user.is_head = is_head
    user.is_active = True
    session.flush()
    return user


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        users = [ensure_user(db, *row) for row in USERS]
        db.commit()
        ceo = users[0]

        for name, category, department, unit, quantity, min_quantity in INVENTORY:
            existing = db.query(InventoryItem).filter(
                InventoryItem.name == name,
                InventoryItem.department == department.value,
            ).first()
            if existing:
                print(f"Inventory item '{name}' already exists ({existing.quantity:g} {existing.unit})")
                continue
            inventory_ledger.create_item(
                db,
                name=name,
                department=department,
                unit=unit,
                quantity=quantity,
                min_quantity=min_quantity,
                category=category,
                actor=ceo,
            )
            print(f"Created inventory item '{name}'")

        print("\nTokens:")
        for user in users:
            print(f"  {user.email:<32} {create_access_token(str(user.id))}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
