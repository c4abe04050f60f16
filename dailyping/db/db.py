import argparse

from .models import Base
from .session import engine

from dailyping.utils.logging import get_logger

logger = get_logger()


def create_tables(bind=engine):
    Base.metadata.create_all(bind)
    logger.info(f"Created tables: {', '.join(sorted(Base.metadata.tables))}")


def drop_tables(bind=engine):
    Base.metadata.drop_all(bind)
    logger.info("Dropped all tables.")


def reset_db(bind=engine):
    drop_tables(bind)
    create_tables(bind)


COMMANDS = {"create": create_tables, "drop": drop_tables, "reset": reset_db}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Manage the DailyPing schema")
    parser.add_argument("command", choices=sorted(COMMANDS), nargs="?", default="create")
    COMMANDS[parser.parse_args().command]()
