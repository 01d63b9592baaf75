# create_tables.py
from sqlmodel import SQLModel
from coventure.database import BACKEND_TABLES, backend_engine


def create_db_and_tables():
    """Crea el esquema del backend en una base de desarrollo (sin la tabla local de sesiones)."""
    SQLModel.metadata.create_all(backend_engine(), tables=BACKEND_TABLES)


if __name__ == "__main__":
    create_db_and_tables()
