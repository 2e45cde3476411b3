"""
Calendar data: which days a user has opened and the message behind each day.

- OpenedDayORM / DaysRepository: per-user record of opened days
- MessageLoader / DirectoryMessageLoader: message text for a date
- Month: calendar month arithmetic used by the pages
"""
import calendar
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date, datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, select
from sqlalchemy.orm import Session

from advent_calendar.auth.models import User
from advent_calendar.auth.repositories import insert_ignoring_conflicts
from advent_calendar.core.database import Base

logger = logging.getLogger(__name__)


class OpenedDayORM(Base):
    """A day a user has opened, with the moment it was first opened."""
    __tablename__ = 'opened_days'

    date = Column(Date, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.user_id', ondelete='CASCADE'), primary_key=True)
    opened = Column(DateTime(timezone=True), nullable=False)


@dataclass(frozen=True, order=True)
class Month:
    year: int
    month: int

    @classmethod
    def of(cls, day: date) -> "Month":
        return cls(day.year, day.month)

    @classmethod
    def parse(cls, text: str) -> "Month":
        """
        Parse YYYY-MM.

        Raises:
            ValueError: If text isn't a valid month
        """
        year, sep, month = text.partition("-")
        if not sep or len(year) != 4 or len(month) != 2 or not (year + month).isdigit():
            raise ValueError(f"not a month: {text!r}")
        parsed = cls(int(year), int(month))
        if not 1 <= parsed.month <= 12 or not MINYEAR <= parsed.year < MAXYEAR:
            raise ValueError(f"not a month: {text!r}")
        return parsed

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, self.length)

    @property
    def length(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    @property
    def name(self) -> str:
        return calendar.month_name[self.month]

    def plus(self, months: int) -> "Month":
        index = self.year * 12 + (self.month - 1) + months
        return Month(index // 12, index % 12 + 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


class DaysRepository:
    """Storage for opened days."""

    def __init__(self, db: Session, clock: Callable[[], datetime]):
        self.db = db
        self._clock = clock

    def mark_day_as_opened(self, user: User, day: date) -> None:
        """Record day as opened by user. Re-opening keeps the first timestamp."""
        statement = insert_ignoring_conflicts(self.db, OpenedDayORM.__table__).values(
            date=day,
            user_id=user.id,
            opened=self._clock(),
        )
        self.db.execute(statement)

    def opened_days_of_month(self, user: User, month: Month) -> List[int]:
        """Day-of-month numbers user has opened in month."""
        rows = self.db.execute(
            select(OpenedDayORM.date)
            .where(OpenedDayORM.user_id == user.id)
            .where(OpenedDayORM.date >= month.first_day)
            .where(OpenedDayORM.date <= month.last_day)
        ).scalars()
        return [day.day for day in rows]

    def has_opened_days(self, user: User) -> bool:
        row = self.db.execute(
            select(OpenedDayORM.date).where(OpenedDayORM.user_id == user.id).limit(1)
        ).first()
        return row is not None

    def opened_days_desc_from(self, user: User, from_date: date, limit: int) -> List[date]:
        """Opened days on or before from_date, newest first."""
        return list(
            self.db.execute(
                select(OpenedDayORM.date)
                .where(OpenedDayORM.user_id == user.id)
                .where(OpenedDayORM.date <= from_date)
                .order_by(OpenedDayORM.date.desc())
                .limit(limit)
            ).scalars()
        )


class MessageLoader(ABC):
    """Source of the message behind each calendar day."""

    @abstractmethod
    def get(self, day: date) -> Optional[str]:
        """Return the message for day, or None if there isn't one."""
        pass


class DirectoryMessageLoader(MessageLoader):
    """
    Reads messages/YYYY-MM-DD from the first directory that has it.

    Directories are searched in order, so configured asset directories
    should come before the packaged ones.
    """

    def __init__(self, directories: Sequence[Path]):
        self.directories = list(directories)

    def get(self, day: date) -> Optional[str]:
        name = day.isoformat()
        for directory in self.directories:
            path = directory / "messages" / name
            if path.is_file():
                return path.read_text(encoding="utf-8")
        logger.debug(f"No message for {name}")
        return None
