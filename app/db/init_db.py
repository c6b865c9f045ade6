# app/db/init_db.py
from __future__ import annotations

import argparse
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.base import Base, import_all_models
from app.models.lab import LabTest

logger = logging.getLogger(__name__)

# code, name, category, specimen, turnaround (h), price
STARTER_LAB_TESTS = [
    ("CBC", "Complete Blood Count", "Hematology", "Whole blood (EDTA)", 4, "800.00"),
    ("HB", "Haemoglobin", "Hematology", "Whole blood (EDTA)", 2, "300.00"),
    ("BS-MPS", "Malaria Parasites (Blood Slide)", "Parasitology", "Whole blood", 1, "200.00"),
    ("RBS", "Random Blood Sugar", "Chemistry", "Capillary blood", 1, "200.00"),
    ("UA", "Urinalysis", "Urinalysis", "Urine", 2, "300.00"),
    ("WIDAL", "Widal Test", "Serology", "Serum", 4, "500.00"),
    ("HIV", "HIV 1/2 Rapid Test", "Serology", "Whole blood", 1, "0.00"),
    ("LFT", "Liver Function Tests", "Chemistry", "Serum", 24, "2500.00"),
    ("UEC", "Urea, Electrolytes & Creatinine", "Chemistry", "Serum", 24, "2000.00"),
]


def list_tables(eng: Engine) -> set:
    names = set(inspect(eng).get_table_names())
    logger.info("Existing tables: %s", sorted(names))
    return names


def seed_lab_tests(db: Session) -> int:
    """
    Insert ONLY missing test codes; safe to run multiple times.
    """
    added = 0
    for code, name, category, specimen, tat, price in STARTER_LAB_TESTS:
        exists = db.query(LabTest.id).filter(LabTest.test_code == code).first()
        if exists:
            continue
        db.add(LabTest(
            test_code=code,
            test_name=name,
            test_category=category,
            specimen_type=specimen,
            turnaround_time=tat,
            price=Decimal(price),
            is_active=True,
        ))
        added += 1
    return added


def run(fresh: bool = False, eng: Optional[Engine] = None) -> None:
    if eng is None:
        from app.db.session import engine as eng

    import_all_models()
    if fresh:
        logger.warning("Dropping ALL tables (dev only) ...")
        Base.metadata.drop_all(bind=eng)

    logger.info("Creating all missing tables ...")
    Base.metadata.create_all(bind=eng)
    list_tables(eng)

    try:
        with Session(eng) as db:
            added = seed_lab_tests(db)
            db.commit()
            logger.info("Lab test catalog seeded (%d new codes).", added)
    except SQLAlchemyError:
        logger.exception("Seeding failed")
        raise


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    parser = argparse.ArgumentParser(
        description="Initialize DB (create tables, seed lab test catalog).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    args = parser.parse_args()
    run(fresh=args.fresh)
