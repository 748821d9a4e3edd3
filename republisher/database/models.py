"""
SQLAlchemy ORM Models for the Series Republisher.
Catalog tables (series, episodes) plus the download queue and upload schedule.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String, Integer, DateTime, Text, Float, BigInteger,
    ForeignKey, Enum, Index, UniqueConstraint
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func
import enum


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# Enums
# -----

class DownloadStatus(str, enum.Enum):
    """Download job status enumeration."""
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadStatus(str, enum.Enum):
    """Upload job status enumeration."""
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# Catalog Models
# --------------

class Series(Base):
    """
    Series model - A catalog series owning an ordered list of episodes.
    """
    __tablename__ = "series"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    intro: Mapped[Optional[str]] = mapped_column(Text)
    cover_url: Mapped[Optional[str]] = mapped_column(Text)
    episode_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    episodes: Mapped[list["Episode"]] = relationship(
        "Episode", back_populates="series", cascade="all, delete-orphan", order_by="Episode.index_sequence"
    )

    def __repr__(self):
        return f"<Series(id={self.id}, title={self.title})>"


class Episode(Base):
    """
    Episode model - One video of a series. ``path`` stays empty until downloaded.
    """
    __tablename__ = "episodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    series_id: Mapped[int] = mapped_column(Integer, ForeignKey("series.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(512))
    index_sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    cover_url: Mapped[Optional[str]] = mapped_column(Text)

    # Media attributes
    duration: Mapped[Optional[int]] = mapped_column(Integer)
    video_height: Mapped[Optional[int]] = mapped_column(Integer)
    video_width: Mapped[Optional[int]] = mapped_column(Integer)

    # Local storage
    path: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    series: Mapped["Series"] = relationship("Series", back_populates="episodes")
    download_jobs: Mapped[list["DownloadJob"]] = relationship(
        "DownloadJob", back_populates="episode", cascade="all, delete-orphan"
    )
    upload_jobs: Mapped[list["UploadJob"]] = relationship(
        "UploadJob", back_populates="episode", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("series_id", "index_sequence", name="uq_episode_series_index"),
        Index("idx_episodes_series_id", "series_id"),
        Index("idx_episodes_path", "path"),
    )

    @property
    def is_downloaded(self) -> bool:
        """True once a local file path has been recorded."""
        return bool(self.path)

    def __repr__(self):
        return f"<Episode(id={self.id}, series_id={self.series_id}, index={self.index_sequence})>"


# Queue Models
# ------------

class DownloadJob(Base):
    """
    Download Job - Fetch state of one episode's bytes to local storage.
    """
    __tablename__ = "download_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    episode_id: Mapped[int] = mapped_column(Integer, ForeignKey("episodes.id", ondelete="CASCADE"), nullable=False)
    series_id: Mapped[int] = mapped_column(Integer, ForeignKey("series.id", ondelete="CASCADE"), nullable=False)

    status: Mapped[DownloadStatus] = mapped_column(
        Enum(DownloadStatus, values_callable=lambda x: [e.value for e in x]),
        default=DownloadStatus.PENDING
    )

    # Progress tracking
    progress: Mapped[float] = mapped_column(Float, default=0)  # percent
    downloaded_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    total_bytes: Mapped[int] = mapped_column(BigInteger, default=0)

    error_message: Mapped[Optional[str]] = mapped_column(Text)

    # Timestamps
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    episode: Mapped["Episode"] = relationship("Episode", back_populates="download_jobs")
    series: Mapped["Series"] = relationship("Series")

    __table_args__ = (
        Index("idx_download_queue_episode", "episode_id"),
        Index("idx_download_queue_status", "status"),
        Index("idx_download_queue_series", "series_id"),
    )

    def __repr__(self):
        return f"<DownloadJob(id={self.id}, episode_id={self.episode_id}, status={self.status})>"


class UploadJob(Base):
    """
    Upload Job - One scheduled republish of an episode to the hosting platform.

    ``retry_count`` is the number of failed attempts so far; the job is skipped
    once it reaches the attempt limit.
    """
    __tablename__ = "upload_schedule"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    episode_id: Mapped[int] = mapped_column(Integer, ForeignKey("episodes.id", ondelete="CASCADE"), nullable=False)
    series_id: Mapped[int] = mapped_column(Integer, ForeignKey("series.id", ondelete="CASCADE"), nullable=False)

    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[UploadStatus] = mapped_column(
        Enum(UploadStatus, values_callable=lambda x: [e.value for e in x]),
        default=UploadStatus.PENDING
    )

    upload_progress: Mapped[int] = mapped_column(Integer, default=0)
    remote_video_id: Mapped[Optional[str]] = mapped_column(String(255))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    episode: Mapped["Episode"] = relationship("Episode", back_populates="upload_jobs")
    series: Mapped["Series"] = relationship("Series")

    __table_args__ = (
        Index("idx_upload_schedule_due", "status", "scheduled_at"),
        Index("idx_upload_schedule_episode", "episode_id"),
        Index("idx_upload_schedule_series", "series_id"),
    )

    def __repr__(self):
        return f"<UploadJob(id={self.id}, episode_id={self.episode_id}, status={self.status}, retry_count={self.retry_count})>"
