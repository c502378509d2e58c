# database.py
# 이벤트/참석 응답/초대/대화 기록 테이블을 하나의 엔진에 올림
# - 요청 처리용 세션: get_db (FastAPI 의존성, 요청마다 열고 닫음)
# - 배치 조회 워커용: get_session_factory (스레드마다 자기 세션을 열어야 함)
import os
import logging
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from models.event import Base
import models.conversation  # noqa: F401  (테이블 등록)

load_dotenv()
logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./events.db")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"


def make_engine(url: str, echo: bool = False) -> Engine:
    """
    URL에 맞는 엔진 생성. sqlite는 워커 스레드에서도 연결을 쓰므로 같은 스레드 검사를 끔

    :param url: SQLAlchemy DB URL
    :type url: str
    :param echo: SQL 로그 출력 여부
    :type echo: bool
    :return: 엔진
    :rtype: Engine
    """
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


engine = make_engine(DATABASE_URL, DB_ECHO)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    Base.metadata.create_all(bind=engine)
    logger.info("[DB] tables ready (%s)", engine.url.get_backend_name())


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    return SessionLocal
