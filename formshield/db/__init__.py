from .session import SessionLocal, build_engine, engine, get_db_session, init_db

__all__ = ["SessionLocal", "build_engine", "engine", "get_db_session", "init_db"]
