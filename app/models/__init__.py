# AutoTrack Registry — Database Models
# Import all models here for SQLAlchemy discovery

from app.models.kv_entry import KeyValueEntry          # noqa
