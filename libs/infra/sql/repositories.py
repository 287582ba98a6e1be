"""SQLAlchemy-backed job and alert repositories.

The jobs table is the durable queue: a claim is a conditional UPDATE that
only succeeds while the row is still ``pending``, so two dispatchers never
run the same job.
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    create_engine,
    func,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from libs.core.application.contracts import AcknowledgeDecision
from libs.core.domain.codec import (
    payload_from_dict,
    payload_to_dict,
    result_from_dict,
    result_to_dict,
)
from libs.core.domain.entities import (
    Alert,
    AlertSeverity,
    AnalysisJob,
    AnalysisResult,
    JobPriority,
    JobStatus,
    Scenario,
    Trigger,
)

Base = declarative_base()


class JobRow(Base):
    __tablename__ = "analysis_jobs"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String, nullable=False, unique=True)
    stream_id = Column(String, nullable=False)
    scenario = Column(String, nullable=False)
    trigger = Column(String, nullable=False)
    magnitude = Column(Float, nullable=False, default=0.0)
    priority = Column(Integer, nullable=False)
    status = Column(String, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=False)
    result = Column(JSON, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(String, nullable=False)
    started_at = Column(String, nullable=True)
    completed_at = Column(String, nullable=True)

    __table_args__ = (
        Index("idx_analysis_jobs_claim", "status", "priority", "sequence"),
    )


class AlertRow(Base):
    __tablename__ = "analysis_alerts"

    alert_id = Column(String, primary_key=True)
    job_id = Column(String, nullable=False)
    stream_id = Column(String, nullable=False)
    result_id = Column(String, nullable=True)
    alert_type = Column(String, nullable=False)
    severity = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(String, nullable=False)
    acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_by = Column(String, nullable=True)
    acknowledged_at = Column(String, nullable=True)

    __table_args__ = (
        Index("idx_analysis_alerts_stream_id", "stream_id"),
        Index("idx_analysis_alerts_created_at", "created_at"),
    )


def create_sql_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, connect_args={"check_same_thread": False})


def init_models(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine, checkfirst=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


class SqlJobRepository:
    """Durable job store; every state change is a guarded UPDATE."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def add(self, job: AnalysisJob) -> AnalysisJob:
        with self._sessions() as session:
            row = JobRow(
                job_id=job.job_id,
                stream_id=job.stream_id,
                scenario=job.scenario.value,
                trigger=job.trigger.value,
                magnitude=job.magnitude,
                priority=int(job.priority),
                status=job.status.value,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                payload=payload_to_dict(job.payload),
                result=None,
                last_error=job.last_error,
                created_at=job.created_at,
                started_at=job.started_at,
                completed_at=job.completed_at,
            )
            session.add(row)
            session.commit()
            return _row_to_job(row)

    def get(self, job_id: str) -> AnalysisJob | None:
        with self._sessions() as session:
            row = _find_job(session, job_id)
            return _row_to_job(row) if row is not None else None

    def claim_next(self, started_at: str) -> AnalysisJob | None:
        with self._sessions() as session:
            while True:
                candidate = session.execute(
                    select(JobRow.job_id)
                    .where(JobRow.status == JobStatus.PENDING.value)
                    .order_by(JobRow.priority.desc(), JobRow.sequence.asc())
                    .limit(1)
                ).scalar_one_or_none()
                if candidate is None:
                    return None

                claimed = session.execute(
                    update(JobRow)
                    .where(
                        JobRow.job_id == candidate,
                        JobRow.status == JobStatus.PENDING.value,
                    )
                    .values(status=JobStatus.PROCESSING.value, started_at=started_at)
                )
                session.commit()
                if claimed.rowcount == 1:
                    row = _find_job(session, candidate)
                    return _row_to_job(row)
                # another dispatcher took it first

    def complete(
        self,
        job_id: str,
        result: AnalysisResult,
        completed_at: str,
    ) -> bool:
        with self._sessions() as session:
            updated = session.execute(
                update(JobRow)
                .where(
                    JobRow.job_id == job_id,
                    JobRow.status == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    result=result_to_dict(result),
                    completed_at=completed_at,
                )
            )
            session.commit()
            return updated.rowcount == 1

    def record_failure(
        self,
        job_id: str,
        error: str,
        completed_at: str,
    ) -> AnalysisJob | None:
        with self._sessions() as session:
            row = _find_job(session, job_id)
            if row is None or row.status != JobStatus.PROCESSING.value:
                return None

            attempts = min(row.attempts + 1, row.max_attempts)
            exhausted = attempts >= row.max_attempts
            values = {
                "attempts": attempts,
                "last_error": error,
                "status": (
                    JobStatus.FAILED.value if exhausted else JobStatus.PENDING.value
                ),
            }
            if exhausted:
                values["completed_at"] = completed_at

            updated = session.execute(
                update(JobRow)
                .where(
                    JobRow.job_id == job_id,
                    JobRow.status == JobStatus.PROCESSING.value,
                    JobRow.attempts == row.attempts,
                )
                .values(**values)
            )
            session.commit()
            if updated.rowcount != 1:
                return None
            return _row_to_job(_find_job(session, job_id))

    def release(self, job_id: str) -> bool:
        with self._sessions() as session:
            updated = session.execute(
                update(JobRow)
                .where(
                    JobRow.job_id == job_id,
                    JobRow.status == JobStatus.PROCESSING.value,
                )
                .values(status=JobStatus.PENDING.value)
            )
            session.commit()
            return updated.rowcount == 1

    def requeue_interrupted(self) -> list[str]:
        with self._sessions() as session:
            job_ids = list(
                session.execute(
                    select(JobRow.job_id).where(
                        JobRow.status == JobStatus.PROCESSING.value
                    )
                ).scalars()
            )
            if job_ids:
                session.execute(
                    update(JobRow)
                    .where(
                        JobRow.job_id.in_(job_ids),
                        JobRow.status == JobStatus.PROCESSING.value,
                    )
                    .values(status=JobStatus.PENDING.value)
                )
                session.commit()
            return job_ids

    def cancel(self, job_id: str, completed_at: str) -> AnalysisJob | None:
        with self._sessions() as session:
            updated = session.execute(
                update(JobRow)
                .where(
                    JobRow.job_id == job_id,
                    JobRow.status == JobStatus.PENDING.value,
                )
                .values(status=JobStatus.CANCELLED.value, completed_at=completed_at)
            )
            session.commit()
            if updated.rowcount != 1:
                return None
            return _row_to_job(_find_job(session, job_id))

    def count_by_status(self) -> dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        with self._sessions() as session:
            rows = session.execute(
                select(JobRow.status, func.count()).group_by(JobRow.status)
            )
            for status, count in rows:
                counts[JobStatus(status)] = count
        return counts

    def count_pending_by_priority(self) -> dict[JobPriority, int]:
        counts = {priority: 0 for priority in JobPriority}
        with self._sessions() as session:
            rows = session.execute(
                select(JobRow.priority, func.count())
                .where(JobRow.status == JobStatus.PENDING.value)
                .group_by(JobRow.priority)
            )
            for priority, count in rows:
                counts[JobPriority(priority)] = count
        return counts


class SqlAlertRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def add(self, alert: Alert) -> None:
        with self._sessions() as session:
            session.add(
                AlertRow(
                    alert_id=alert.alert_id,
                    job_id=alert.job_id,
                    stream_id=alert.stream_id,
                    result_id=alert.result_id,
                    alert_type=alert.alert_type,
                    severity=alert.severity.value,
                    message=alert.message,
                    created_at=alert.created_at,
                    acknowledged=alert.acknowledged,
                    acknowledged_by=alert.acknowledged_by,
                    acknowledged_at=alert.acknowledged_at,
                )
            )
            session.commit()

    def get(self, alert_id: str) -> Alert | None:
        with self._sessions() as session:
            row = session.get(AlertRow, alert_id)
            return _row_to_alert(row) if row is not None else None

    def list(
        self,
        stream_id: str | None = None,
        severity: str | None = None,
        acknowledged: bool | None = None,
    ) -> list[Alert]:
        query = select(AlertRow).order_by(AlertRow.created_at.asc())
        if stream_id is not None:
            query = query.where(AlertRow.stream_id == stream_id)
        if severity is not None:
            query = query.where(AlertRow.severity == severity)
        if acknowledged is not None:
            query = query.where(AlertRow.acknowledged == acknowledged)
        with self._sessions() as session:
            return [_row_to_alert(row) for row in session.execute(query).scalars()]

    def acknowledge(
        self,
        alert_id: str,
        decision: AcknowledgeDecision,
    ) -> Alert | None:
        with self._sessions() as session:
            row = session.get(AlertRow, alert_id)
            if row is None:
                return None
            updated = session.execute(
                update(AlertRow)
                .where(
                    AlertRow.alert_id == alert_id,
                    AlertRow.acknowledged.is_(False),
                )
                .values(
                    acknowledged=True,
                    acknowledged_by=decision["acknowledged_by"],
                    acknowledged_at=decision["acknowledged_at"],
                )
            )
            session.commit()
            if updated.rowcount != 1:
                raise ValueError("Alert already acknowledged")
            session.refresh(row)
            return _row_to_alert(row)


def _find_job(session, job_id: str) -> JobRow | None:
    return session.execute(
        select(JobRow).where(JobRow.job_id == job_id)
    ).scalar_one_or_none()


def _row_to_job(row: JobRow) -> AnalysisJob:
    return AnalysisJob(
        job_id=row.job_id,
        stream_id=row.stream_id,
        payload=payload_from_dict(row.payload),
        scenario=Scenario(row.scenario),
        trigger=Trigger(row.trigger),
        magnitude=row.magnitude,
        priority=JobPriority(row.priority),
        status=JobStatus(row.status),
        max_attempts=row.max_attempts,
        created_at=row.created_at,
        attempts=row.attempts,
        sequence=row.sequence,
        last_error=row.last_error,
        started_at=row.started_at,
        completed_at=row.completed_at,
        result=result_from_dict(row.result) if row.result is not None else None,
    )


def _row_to_alert(row: AlertRow) -> Alert:
    return Alert(
        alert_id=row.alert_id,
        job_id=row.job_id,
        stream_id=row.stream_id,
        alert_type=row.alert_type,
        severity=AlertSeverity(row.severity),
        message=row.message,
        created_at=row.created_at,
        result_id=row.result_id,
        acknowledged=row.acknowledged,
        acknowledged_by=row.acknowledged_by,
        acknowledged_at=row.acknowledged_at,
    )
