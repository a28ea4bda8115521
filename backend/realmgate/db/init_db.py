import logging

from realmgate.db.base import Base
from realmgate.db.session import engine
import realmgate.db.models  # noqa

logger = logging.getLogger(__name__)


def init_db(bind=None):
    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info("Schema ready: %s tables", len(Base.metadata.tables))


if __name__ == "__main__":
    init_db()
