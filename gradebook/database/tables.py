from sqlalchemy import (
    MetaData, Table, Column, String, Integer,
    func, DateTime, JSON, PrimaryKeyConstraint
)

metadata = MetaData()

HEAD_KEY = "head"

documents = Table(
    "documents",
    metadata,
    Column("collection", String(100), nullable=False, index=True),
    Column("document_id", String(64), nullable=False),
    Column("data", JSON, nullable=False),
    # revisione dell'ultima scrittura sul documento
    Column("revision", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=True, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=True, server_default=func.now()),
    PrimaryKeyConstraint("collection", "document_id", name="pk_documents"),
)

# change log: una riga per documento toccato, tutte con la revisione del commit
changes = Table(
    "changes",
    metadata,
    Column("change_id", Integer, primary_key=True, autoincrement=True),
    Column("revision", Integer, nullable=False, index=True),
    Column("collection", String(100), nullable=False),
    Column("document_id", String(64), nullable=False),
    Column("kind", String(16), nullable=False),
    Column("data", JSON, nullable=True),
)

# contatore di revisione: la riga "head" serializza i commit
store_meta = Table(
    "store_meta",
    metadata,
    Column("key", String(32), primary_key=True),
    Column("revision", Integer, nullable=False),
)
