"""
Job model for asynchronous document processing.

SECURITY: Every query made on behalf of an end user MUST include an
owner_id filter. Only the worker reads jobs by id alone.
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import String, Text, Integer, BigInteger, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from docai.models.base import Base, TimestampMixin


class JobStatus(str, enum.Enum):
    """Job status enum.

    queued -> processing -> completed | failed, plus the client-triggered
    failed -> queued retry edge.
    """
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(Base, TimestampMixin):
    """
    One uploaded document's processing lifecycle.

    blob_location and the file metadata are written once at creation.
    result is set only when completed, error only when failed.
    """
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    blob_location: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    media_type: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, native_enum=False, length=20,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JobStatus.QUEUED,
        index=True
    )
    result: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Job(id={self.id}, owner={self.owner_id}, status={self.status})>"
