"""
Measurement Workflow - Configuration
====================================

Runtime configuration for the guided measurement engine.
Defaults favour local availability: the prerequisite gate fails open and a
failed summary delivery does not prevent local completion.

Usage:
    from measurement_workflow.config import WorkflowSettings

    config = WorkflowSettings.get_config()
    if config.prerequisite_fail_open:
        ...

Environment variables (a .env file is honoured):
    SKIQC_DATABASE_URL=sqlite:///skiqc.db
    SKIQC_SNAPSHOT_URL=https://.../webhook/read
    SKIQC_PREREQUISITE_FAIL_OPEN=true
    SKIQC_PAIR_OPERATIONS=press_in,press_out
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


DEFAULT_PAIR_OPERATIONS = frozenset({"press_in", "press_out"})
DEFAULT_WAX_OIL_TRIGGER_FIELD = "base_gap_finition"
DEFAULT_TERMINAL_GRADE = "C"


@dataclass
class WorkflowConfig:
    """
    Measurement workflow configuration.

    Endpoint URLs left empty disable the matching HTTP collaborator.
    """
    database_url: str = "sqlite:///skiqc.db"

    # HTTP collaborators
    snapshot_url: str = ""
    pair_summary_url: str = ""
    single_summary_url: str = ""
    request_timeout_seconds: float = 10.0

    # Availability-over-consistency switches
    prerequisite_fail_open: bool = True
    hard_stop_on_terminal_grade: bool = False
    complete_on_delivery_failure: bool = True
    audit_gate_overrides: bool = True

    # Session behaviour
    comment_debounce_seconds: float = 0.8
    wax_oil_trigger_field: str = DEFAULT_WAX_OIL_TRIGGER_FIELD
    pair_operations: FrozenSet[str] = field(default_factory=lambda: DEFAULT_PAIR_OPERATIONS)
    terminal_grade: str = DEFAULT_TERMINAL_GRADE
    write_workers: int = 4
    # Idle sessions older than this are dropped; 0 disables pruning
    session_ttl_seconds: float = 8 * 3600

    catalog_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "database_url": self.database_url,
            "snapshot_url": self.snapshot_url,
            "pair_summary_url": self.pair_summary_url,
            "single_summary_url": self.single_summary_url,
            "request_timeout_seconds": self.request_timeout_seconds,
            "prerequisite_fail_open": self.prerequisite_fail_open,
            "hard_stop_on_terminal_grade": self.hard_stop_on_terminal_grade,
            "complete_on_delivery_failure": self.complete_on_delivery_failure,
            "audit_gate_overrides": self.audit_gate_overrides,
            "comment_debounce_seconds": self.comment_debounce_seconds,
            "wax_oil_trigger_field": self.wax_oil_trigger_field,
            "pair_operations": sorted(self.pair_operations),
            "terminal_grade": self.terminal_grade,
            "write_workers": self.write_workers,
            "session_ttl_seconds": self.session_ttl_seconds,
            "catalog_path": self.catalog_path,
        }


class WorkflowSettings:
    """
    Singleton holder for WorkflowConfig.

    Loads from environment variables on first access; reset() forces a reload.
    """

    _instance: Optional[WorkflowConfig] = None

    @classmethod
    def _load_from_env(cls) -> WorkflowConfig:
        load_dotenv()
        config = WorkflowConfig()

        str_mapping = {
            "SKIQC_DATABASE_URL": "database_url",
            "SKIQC_SNAPSHOT_URL": "snapshot_url",
            "SKIQC_PAIR_SUMMARY_URL": "pair_summary_url",
            "SKIQC_SINGLE_SUMMARY_URL": "single_summary_url",
            "SKIQC_WAX_OIL_TRIGGER_FIELD": "wax_oil_trigger_field",
            "SKIQC_TERMINAL_GRADE": "terminal_grade",
            "SKIQC_CATALOG_PATH": "catalog_path",
        }
        for env_var, attr_name in str_mapping.items():
            value = os.environ.get(env_var)
            if value:
                setattr(config, attr_name, value.strip())

        bool_mapping = {
            "SKIQC_PREREQUISITE_FAIL_OPEN": "prerequisite_fail_open",
            "SKIQC_HARD_STOP_ON_TERMINAL_GRADE": "hard_stop_on_terminal_grade",
            "SKIQC_COMPLETE_ON_DELIVERY_FAILURE": "complete_on_delivery_failure",
            "SKIQC_AUDIT_GATE_OVERRIDES": "audit_gate_overrides",
        }
        for env_var, attr_name in bool_mapping.items():
            value = os.environ.get(env_var)
            if value:
                setattr(config, attr_name, value.lower() in ("true", "1", "yes"))

        number_mapping = {
            "SKIQC_REQUEST_TIMEOUT_SECONDS": ("request_timeout_seconds", float),
            "SKIQC_COMMENT_DEBOUNCE_SECONDS": ("comment_debounce_seconds", float),
            "SKIQC_WRITE_WORKERS": ("write_workers", int),
            "SKIQC_SESSION_TTL_SECONDS": ("session_ttl_seconds", float),
        }
        for env_var, (attr_name, cast) in number_mapping.items():
            value = os.environ.get(env_var)
            if value:
                try:
                    setattr(config, attr_name, cast(value))
                except ValueError:
                    logger.warning(f"Invalid value for {env_var}: {value}")

        pair_ops = os.environ.get("SKIQC_PAIR_OPERATIONS")
        if pair_ops:
            config.pair_operations = frozenset(
                op.strip() for op in pair_ops.split(",") if op.strip()
            )

        if config.write_workers < 1:
            logger.warning(f"write_workers must be >= 1, got {config.write_workers}; using 1")
            config.write_workers = 1

        return config

    @classmethod
    def get_config(cls) -> WorkflowConfig:
        if cls._instance is None:
            cls._instance = cls._load_from_env()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the cached config (tests)."""
        cls._instance = None
