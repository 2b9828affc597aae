from app.database import Base, SessionLocal, engine

__all__ = ["Base", "SessionLocal", "engine"]
