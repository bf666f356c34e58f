"""Domain models for the sheet -> PostgreSQL migration tool.

This package contains the domain model classes used throughout the
application: configuration, per-field outcomes, candidate records, run
statistics and pipeline results.
"""

from .audit_record import AuditRecord
from .candidate_record import CandidateRecord, Classification, DuplicateEntry, Verdict
from .config_models import DatabaseConfig, EntityConfig, EtlOptions, ImportConfig
from .field_outcome import FieldIssue, FieldOutcome, OutcomeKind, Severity
from .pipeline_result import EntityResult, LoadFailure, LoadResult, PipelineResult, PipelineState
from .run_statistics import EntityStatistics, RunStatistics

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "EntityConfig",
    "EtlOptions",
    "ImportConfig",
    # Field level
    "FieldIssue",
    "FieldOutcome",
    "OutcomeKind",
    "Severity",
    # Record level
    "CandidateRecord",
    "Classification",
    "DuplicateEntry",
    "Verdict",
    # Run level
    "AuditRecord",
    "EntityResult",
    "EntityStatistics",
    "LoadFailure",
    "LoadResult",
    "PipelineResult",
    "PipelineState",
    "RunStatistics",
]
