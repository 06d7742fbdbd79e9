#!/usr/bin/env python3
"""
Creates the projects, floor_plans and renders tables.
Pass --reset to drop them first (this deletes every stored render).
"""

import sys
import logging

from config import DATABASE_URL
from database import engine, Base
import models  # noqa: F401  registers the tables on Base.metadata

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")


def init_database(reset: bool = False, bind=engine):
    if reset:
        logging.warning(f"⚠️ Dropping all visualizer tables on {bind.url}")
        Base.metadata.drop_all(bind=bind)
    Base.metadata.create_all(bind=bind)
    logging.info(f"✅ Tables ready: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    try:
        init_database(reset="--reset" in sys.argv[1:])
    except Exception as e:
        logging.error(f"❌ Error creating tables on {DATABASE_URL}: {e}")
        sys.exit(1)
