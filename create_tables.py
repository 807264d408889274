from app.db.session import engine
from app.db.base import Base
from app import models  # noqa: F401  registers the access tables

print("Creating course access tables...")
Base.metadata.create_all(bind=engine)
print(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")
