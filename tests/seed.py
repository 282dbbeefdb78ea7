"""Canonical test data and helpers shared by the test modules."""

import threading
from collections import Counter

from app.models.language_model import LanguageModel
from app.schemas.canon import ChapterUpsert, VerseIn
from app.services.canon import upsert_chapter
from app.services.model_invoker import ModelInvoker

BIBLE_ID = 1001

# Exodus is listed first so ordering must come from book position, not insertion order
CANON = [
    ("Exodus", 2, 1, [
        (201, 1, [
            "Now these are the names of the children of Israel, which came into Egypt; "
            "every man and his household came with Jacob.",
            "Reuben, Simeon, Levi, and Judah,",
            "Issachar, Zebulun, and Benjamin,",
        ]),
        (202, 2, [
            "And there went a man of the house of Levi, and took to wife a daughter of Levi.",
            "And the woman conceived, and bare a son: and when she saw him that he was a goodly "
            "child, she hid him three months.",
        ]),
    ]),
    ("Genesis", 1, 0, [
        (101, 1, [
            "In the beginning God created the heaven and the earth.",
            "And the earth was without form, and void; and darkness was upon the face of the deep. "
            "And the Spirit of God moved upon the face of the waters.",
            "And God said, Let there be light: and there was light.",
            "And God saw the light, that it was good: and God divided the light from the darkness.",
            "And God called the light Day, and the darkness he called Night. "
            "And the evening and the morning were the first day.",
        ]),
        (102, 2, [
            "Thus the heavens and the earth were finished, and all the host of them.",
            "And on the seventh day God ended his work which he had made; "
            "and he rested on the seventh day from all his work which he had made.",
            "And God blessed the seventh day, and sanctified it: "
            "because that in it he had rested from all his work which God created and made.",
        ]),
        (103, 3, [
            "Now the serpent was more subtil than any beast of the field which the LORD God had made. "
            "And he said unto the woman, Yea, hath God said, Ye shall not eat of every tree of the garden?",
            "And the woman said unto the serpent, We may eat of the fruit of the trees of the garden:",
            "But of the fruit of the tree which is in the midst of the garden, God hath said, "
            "Ye shall not eat of it, neither shall ye touch it, lest ye die.",
        ]),
    ]),
]

CHAPTERS_IN_ORDER = [101, 102, 103, 201, 202]


def verse_id(chapter_id: int, verse_number: int) -> int:
    return chapter_id * 1000 + verse_number


def chapter_payload(book_name, book_id, position, chapter_id, number, texts) -> ChapterUpsert:
    return ChapterUpsert(
        bible_id=BIBLE_ID,
        bible_name="King James Version",
        language="en",
        book_id=book_id,
        book_name=book_name,
        book_position=position,
        chapter_id=chapter_id,
        chapter_number=number,
        verses=[
            VerseIn(verse_id=verse_id(chapter_id, i), verse_number=i, text=text)
            for i, text in enumerate(texts, start=1)
        ],
    )


VERSES_IN_ORDER = [
    verse_id(chapter_id, i)
    for chapter_id, count in [(101, 5), (102, 3), (103, 3), (201, 3), (202, 2)]
    for i in range(1, count + 1)
]


def seed_canon(session_factory):
    """Load every chapter of CANON through the ingest service."""
    with session_factory() as db:
        for book_name, book_id, position, chapters in CANON:
            for chapter_id, number, texts in chapters:
                upsert_chapter(db, chapter_payload(book_name, book_id, position, chapter_id, number, texts))
    return BIBLE_ID


def add_model(session_factory, model_id, api_config=None, provider="mock", is_active=True):
    with session_factory() as db:
        db.add(
            LanguageModel(
                model_id=model_id,
                provider=provider,
                display_name=f"Model {model_id}",
                model_name=f"test/model-{model_id}",
                api_config=api_config or {},
                is_active=is_active,
            )
        )
        db.commit()
    return model_id


class CountingInvoker:
    """Wraps the real invoker and counts calls per target."""

    def __init__(self, inner=None):
        self.inner = inner or ModelInvoker()
        self.calls = Counter()
        self._lock = threading.Lock()

    def invoke(self, model, target):
        with self._lock:
            self.calls[target.target_id] += 1
        return self.inner.invoke(model, target)
