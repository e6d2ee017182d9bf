"""
API Services Layer.

Database operations behind the API endpoints and the SLA worker.
"""

from api.services.stage_history import (
    create_stage_entry,
    close_stage_entry,
    get_stage_history,
    get_stage_history_by_candidate_id,
    get_current_stage_entry,
)

from api.services.auto_rejection import (
    evaluate_auto_rejection,
    process_auto_rejection,
    process_auto_rejection_legacy,
    update_auto_rejection_rules,
)

from api.services.pipeline import (
    move_candidate,
    bulk_move_candidates,
    create_application,
    auto_advance_on_feedback,
)

from api.services.sla import (
    get_sla_status_summary,
    get_sla_configs,
    update_sla_config,
    update_sla_configs,
    delete_sla_config,
    get_default_thresholds,
    check_sla_breaches,
    check_candidate_sla_breach,
)

from api.services.analytics import (
    get_kpi_metrics,
    get_funnel_analytics,
    get_conversion_rates,
    get_time_to_fill,
    get_time_in_stage,
    get_source_performance,
    get_recruiter_productivity,
    get_panel_performance,
    get_drop_off_analysis,
    get_rejection_reasons,
    get_offer_acceptance_rate,
    get_sla_status,
    get_overview,
)

from api.services.analytics_export import (
    export_report,
)

__all__ = [
    # Stage history
    "create_stage_entry",
    "close_stage_entry",
    "get_stage_history",
    "get_stage_history_by_candidate_id",
    "get_current_stage_entry",
    # Auto-rejection
    "evaluate_auto_rejection",
    "process_auto_rejection",
    "process_auto_rejection_legacy",
    "update_auto_rejection_rules",
    # Pipeline
    "move_candidate",
    "bulk_move_candidates",
    "create_application",
    "auto_advance_on_feedback",
    # SLA
    "get_sla_status_summary",
    "get_sla_configs",
    "update_sla_config",
    "update_sla_configs",
    "delete_sla_config",
    "get_default_thresholds",
    "check_sla_breaches",
    "check_candidate_sla_breach",
    # Analytics
    "get_kpi_metrics",
    "get_funnel_analytics",
    "get_conversion_rates",
    "get_time_to_fill",
    "get_time_in_stage",
    "get_source_performance",
    "get_recruiter_productivity",
    "get_panel_performance",
    "get_drop_off_analysis",
    "get_rejection_reasons",
    "get_offer_acceptance_rate",
    "get_sla_status",
    "get_overview",
    # Export
    "export_report",
]
