from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from config import DATABASE_URL


SQLALCHEMY_DATABASE_URL = DATABASE_URL

# Création du moteur de base de données
# (check_same_thread désactivé pour SQLite, les routes FastAPI tournent dans un threadpool)
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False} if SQLALCHEMY_DATABASE_URL.startswith("sqlite") else {},
)

# Session pour les requêtes
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base pour les modèles
Base = declarative_base()

def get_db():
    """Dépendance pour obtenir une session DB dans les routes FastAPI"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db():
    """Crée les tables dans la base de données"""
    import models  # noqa: F401  (enregistre les modèles dans Base.metadata)
    Base.metadata.create_all(bind=engine)
