from peewee import *

DEFAULT_DB_PATH = "treasury_budget_indexer.db"

# bound to a concrete SqliteDatabase by init_db, so tests can swap in their own
sqlite_db = DatabaseProxy()


def init_db(path: str = DEFAULT_DB_PATH) -> SqliteDatabase:
    """
    Open the database at the given path and bind all models to it.
    """
    database = SqliteDatabase(
        path,
        pragmas={
            "journal_mode": "wal",
            "foreign_keys": 1,
            "ignore_check_constraints": 0,
        },
        timeout=30,
    )
    sqlite_db.initialize(database)
    return database


def create_tables():
    """
    Create all tables that do not exist yet.
    """
    from .treasury import ALL_MODELS

    sqlite_db.create_tables([Block] + ALL_MODELS, safe=True)


class BaseModel(Model):
    class Meta:
        database = sqlite_db


ScriptHash = lambda **kwargs: CharField(max_length=64, **kwargs)
TxHash = lambda **kwargs: CharField(max_length=64, **kwargs)
JSONField = TextField


class Block(BaseModel):
    """
    Sync cursor: blocks whose transactions have all been handed to the processor
    """

    hash = CharField(max_length=64, unique=True)
    slot = IntegerField(index=True)
    height = IntegerField()
