"""Canonical scripture models."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from app.database import Base


class Bible(Base):
    """A canonical translation, e.g. KJV."""

    __tablename__ = "bibles"

    bible_id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(Text, nullable=False)
    language = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    books = relationship("Book", back_populates="bible", cascade="all, delete-orphan")


class Book(Base):
    __tablename__ = "books"

    book_id = Column(Integer, primary_key=True, autoincrement=False)
    bible_id = Column(Integer, ForeignKey("bibles.bible_id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    position = Column(Integer, nullable=False)  # Canonical order within the bible

    bible = relationship("Bible", back_populates="books")

    __table_args__ = (Index("idx_books_bible_position", "bible_id", "position"),)


class Chapter(Base):
    __tablename__ = "chapters"

    chapter_id = Column(Integer, primary_key=True, autoincrement=False)
    bible_id = Column(Integer, ForeignKey("bibles.bible_id", ondelete="CASCADE"), nullable=False)
    book_id = Column(Integer, ForeignKey("books.book_id", ondelete="CASCADE"), nullable=False)
    chapter_number = Column(Integer, nullable=False)
    reference = Column(Text, nullable=False)  # e.g. "Genesis 1"
    text_processed = Column(Text, nullable=False)
    hash_processed = Column(String(64), nullable=False)

    __table_args__ = (
        Index("idx_chapters_bible_id", "bible_id"),
        Index("idx_chapters_book_number", "book_id", "chapter_number"),
    )


class Verse(Base):
    __tablename__ = "verses"

    verse_id = Column(Integer, primary_key=True, autoincrement=False)
    chapter_id = Column(Integer, ForeignKey("chapters.chapter_id", ondelete="CASCADE"), nullable=False)
    bible_id = Column(Integer, nullable=False)
    book_id = Column(Integer, nullable=False)
    chapter_number = Column(Integer, nullable=False)
    verse_number = Column(Integer, nullable=False)
    reference = Column(Text, nullable=False)  # e.g. "Genesis 1:1"
    text_raw = Column(Text, nullable=False)
    text_processed = Column(Text, nullable=False)
    hash_processed = Column(String(64), nullable=False)

    __table_args__ = (
        Index("idx_verses_chapter_number", "chapter_id", "verse_number"),
        Index("idx_verses_bible_id", "bible_id"),
        Index("idx_verses_book_id", "book_id"),
    )
