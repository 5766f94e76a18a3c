"""Database configuration and initialization."""
from sqlalchemy import create_engine, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

# Create SQLAlchemy base
Base = declarative_base()

# BIGINT primary keys only autoincrement on SQLite when declared as INTEGER
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
db_session = None
SessionFactory = None


def init_db(app):
    """Initialize database connection."""
    global engine, db_session, SessionFactory
    
    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine_options = {
        'echo': app.config.get('SQLALCHEMY_ECHO', False),
        'pool_pre_ping': True,  # Enable connection health checks
    }
    if not database_uri.startswith('sqlite'):
        engine_options.update(pool_size=10, max_overflow=20)
    
    engine = create_engine(database_uri, **engine_options)
    
    SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db_session = scoped_session(SessionFactory)
    
    Base.query = db_session.query_property()
    
    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_tables():
    """Create every table known to the model registry."""
    import marketplace.models  # noqa: F401  (registers mappers)
    Base.metadata.create_all(bind=engine)


def drop_tables():
    """Drop every table known to the model registry."""
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


def get_session_factory():
    """Plain session factory for work that runs outside the request thread."""
    return SessionFactory
