import json
from datetime import datetime
from sqlalchemy import Column, DateTime, Float, Integer, String, Text

from database import Base, engine

class CacheEntry(Base):
    __tablename__ = "cache_log"
    id                         = Column(Integer, primary_key=True)
    path                       = Column(String, unique=True, nullable=False, index=True)
    cache_dir                  = Column(String, nullable=False, default="")
    source_path                = Column(String, nullable=False, default="")
    width                      = Column(Integer)
    height                     = Column(Integer)
    mime_type                  = Column(String)
    size                       = Column(Integer, default=0, nullable=False)
    processing_time            = Column(Float, default=0.0, nullable=False)
    # Access statistics (count starts at 1 for the render that created the entry)
    count                      = Column(Integer, default=1, nullable=False)
    cumulative_size            = Column(Integer, default=0, nullable=False)
    cumulative_processing_time = Column(Float, default=0.0, nullable=False)
    inception_date             = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_access                = Column(DateTime, default=datetime.utcnow, nullable=False)
    vars_json                  = Column("vars", Text, nullable=False, default="{}")

    @property
    def vars(self) -> dict:
        return json.loads(self.vars_json or "{}")

    @vars.setter
    def vars(self, value: dict) -> None:
        self.vars_json = json.dumps(value or {}, sort_keys=True)

# Bootstrap tables (no‑op if already present)
Base.metadata.create_all(bind=engine)
