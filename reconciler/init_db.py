from reconciler.app import create_app
from reconciler.logger import get_logger
from reconciler.models import db

logger = get_logger(__name__)


def init_db(config=None):
    app = create_app(config)
    with app.app_context():
        db.create_all()
        logger.info("database_initialized", uri=app.config['SQLALCHEMY_DATABASE_URI'])
    return app


if __name__ == '__main__':
    init_db()
