"""
核心数据模型 (Data Models)
定义存储在 SQLite (content.db) 中的表结构。
"""
from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()

class WritingDay(Base):
    """
    写作历史表
    每天一行，记录当天观察到的最大会话字数 (用于写作热力图)。
    """
    __tablename__ = 'writing_days'

    day = Column(String, primary_key=True) # ISO 日期，如 "2026-10-18"
    words = Column(Integer, default=0, nullable=False)
