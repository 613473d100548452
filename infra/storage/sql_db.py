"""
SQLite 数据库管理器 (SQL Store)
负责管理单项目目录下的 content.db (写作历史)。
"""
import os
import logging
from datetime import date, timedelta
from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from core.models import Base, WritingDay

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_DAYS = 365

@lru_cache(maxsize=5)
def get_engine(project_root: str):
    """
    获取指定项目的数据库引擎 (带缓存)。
    """
    db_path = os.path.join(project_root, "content.db")
    # 后端调用在工作线程中执行
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})

    # 自动建表
    Base.metadata.create_all(engine)
    return engine

def get_session(project_root: str) -> Session:
    """获取一个新的数据库会话"""
    engine = get_engine(project_root)
    SessionLocal = sessionmaker(bind=engine)
    return SessionLocal()

def record_daily_words(project_root: str, words: int, day: Optional[date] = None,
                       keep_days: int = DEFAULT_HISTORY_DAYS) -> bool:
    """
    记录某天的写作字数 (同一天取最大值)，并清理超出保留期的记录。
    """
    day = day or date.today()
    cutoff = (day - timedelta(days=keep_days)).isoformat()
    session = get_session(project_root)
    try:
        entry = session.query(WritingDay).filter_by(day=day.isoformat()).first()
        if entry:
            entry.words = max(entry.words, words)
        else:
            session.add(WritingDay(day=day.isoformat(), words=words))
        session.query(WritingDay).filter(WritingDay.day < cutoff).delete()
        session.commit()
        return True
    except Exception as e:
        session.rollback()
        logger.error(f"记录写作历史失败 {day}: {e}")
        return False
    finally:
        session.close()

def get_writing_history(project_root: str) -> list:
    """获取写作历史，按日期排列"""
    session = get_session(project_root)
    try:
        days = session.query(WritingDay).order_by(WritingDay.day).all()
        return [{"date": d.day, "words": d.words} for d in days]
    finally:
        session.close()
