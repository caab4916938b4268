"""
SQLAlchemy models for experiment persistence.
"""
from datetime import datetime
import enum

from sqlalchemy import Column, DateTime, Enum, Float, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


class ExperimentStatus(str, enum.Enum):
    """Lifecycle states of an A/B experiment."""
    DRAFT = "draft"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"


class ExperimentRecord(Base):
    """Experiment definition and its latest lifecycle state."""
    __tablename__ = "experiments"

    id = Column(Integer, primary_key=True, index=True)
    experiment_id = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    metric = Column(String(100), nullable=False)

    variants = Column(JSON, nullable=False)  # [{"name": "control", "weight": 0.5, "config": {...}}]
    minimum_sample_size = Column(Integer, default=0)
    status = Column(Enum(ExperimentStatus), default=ExperimentStatus.DRAFT, index=True)
    stop_reason = Column(String(100))
    final_analysis = Column(JSON)

    start_at = Column(DateTime)
    end_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    results = relationship("ExperimentResultRecord", back_populates="experiment")


class ExperimentResultRecord(Base):
    """One observed outcome for a user in an experiment variant."""
    __tablename__ = "experiment_results"

    id = Column(Integer, primary_key=True, index=True)
    experiment_pk = Column(Integer, ForeignKey("experiments.id"), nullable=False)
    variant = Column(String(100), nullable=False)
    user_id = Column(String(200), nullable=False)
    value = Column(Float, nullable=False)
    extra = Column(JSON, default={})
    recorded_at = Column(DateTime, default=datetime.utcnow, index=True)

    experiment = relationship("ExperimentRecord", back_populates="results")

    __table_args__ = (
        Index("idx_result_experiment_variant", "experiment_pk", "variant"),
    )
