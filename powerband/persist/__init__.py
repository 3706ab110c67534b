from powerband.persist.price_db import DEFAULT_DB_PATH, SchemaError, last_date, read_price_db, write_price_db

__all__ = ["DEFAULT_DB_PATH", "SchemaError", "read_price_db", "write_price_db", "last_date"]
