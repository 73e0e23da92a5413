import os

PG_HOST = os.getenv("PG_HOST", "postgres")
PG_PORT = os.getenv("PG_PORT", "5432")
PG_USER = os.getenv("PG_USER", "appuser")
PG_PASSWORD = os.getenv("PG_PASSWORD", "apppass")
PG_DB = os.getenv("PG_DB", "appdb")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{PG_USER}:{PG_PASSWORD}@{PG_HOST}:{PG_PORT}/{PG_DB}",
)

# "memory" or "database"
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory")

SQL_ECHO = os.getenv("SQL_ECHO", "0").lower() in ("1", "true", "yes")
