"""
Report export.

Renders the analytics report dictionaries as CSV or plain text. Each report
type maps to one or more tabular sections; no data is fetched here.
"""

from typing import Any, Callable, Dict, List, Tuple
import csv
import io

from core.errors import ValidationError

EXPORT_FORMATS = ("csv", "text")

Section = Tuple[str, List[str], List[List[Any]]]


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def _kpi_sections(data: Dict[str, Any]) -> List[Section]:
    labels = [
        ("Active Roles", "activeRoles"),
        ("Active Candidates", "activeCandidates"),
        ("New Candidates This Month", "newCandidatesThisMonth"),
        ("Interviews Today", "interviewsToday"),
        ("Interviews This Week", "interviewsThisWeek"),
        ("Offers Pending", "offersPending"),
        ("Total Hires", "totalHires"),
        ("Total Offers", "totalOffers"),
        ("Avg Time to Fill", "avgTimeToFill"),
        ("Offer Acceptance Rate", "offerAcceptanceRate"),
        ("Roles On Track", "rolesOnTrack"),
        ("Roles At Risk", "rolesAtRisk"),
        ("Roles Breached", "rolesBreached"),
    ]
    rows = [[label, data.get(key, 0)] for label, key in labels]
    return [("KPI Metrics", ["Metric", "Value"], rows)]


def _funnel_sections(data: Dict[str, Any]) -> List[Section]:
    rows = [
        [stage["name"], stage["count"], stage["percentage"], stage["conversionToNext"], stage["avgDaysInStage"]]
        for stage in data["stages"]
    ]
    rows.append(["Total Applicants", data["totalApplicants"], "", "", ""])
    rows.append(["Total Hired", data["totalHired"], "", "", ""])
    rows.append(["Overall Conversion Rate", data["overallConversionRate"], "", "", ""])
    headers = ["Stage", "Count", "Percentage", "Conversion to Next", "Avg Days in Stage"]
    return [("Funnel Analytics", headers, rows)]


def _conversion_sections(data: Dict[str, Any]) -> List[Section]:
    rows = [
        [stage["fromStage"], stage["toStage"], stage["conversionRate"], stage["dropOffCount"]]
        for stage in data["stages"]
    ]
    return [("Stage Conversion", ["From Stage", "To Stage", "Conversion Rate", "Drop-off Count"], rows)]


def _time_to_fill_sections(data: Dict[str, Any]) -> List[Section]:
    overall = data["overall"]
    return [
        (
            "Time to Fill",
            ["Metric", "Value"],
            [["Average", overall["average"]], ["Median", overall["median"]], ["Target", overall["target"]]],
        ),
        (
            "Time to Fill by Department",
            ["Department", "Average Days", "Hires"],
            [[row["department"] or "", row["average"], row["count"]] for row in data["byDepartment"]],
        ),
        (
            "Time to Fill by Role",
            ["Role", "Average Days", "Over Target"],
            [[row["roleName"], row["average"], _yes_no(row["isOverTarget"])] for row in data["byRole"]],
        ),
    ]


def _time_in_stage_sections(data: Dict[str, Any]) -> List[Section]:
    rows = [
        [stage["stageName"], stage["avgDays"], _yes_no(stage["isBottleneck"])]
        for stage in data["stages"]
    ]
    rows.append(["Bottleneck Stage", data["bottleneckStage"] or "None", ""])
    return [("Time in Stage", ["Stage", "Average Days", "Is Bottleneck"], rows)]


def _source_sections(data: List[Dict[str, Any]]) -> List[Section]:
    headers = ["Source", "Candidates", "Percentage", "Hires", "Hire Rate", "Avg Time to Hire"]
    rows = [
        [row["source"], row["candidateCount"], row["percentage"], row["hireCount"], row["hireRate"], row["avgTimeToHire"]]
        for row in data
    ]
    return [("Source Performance", headers, rows)]


def _recruiter_sections(data: List[Dict[str, Any]]) -> List[Section]:
    headers = [
        "Name", "Specialty", "Active Roles", "CVs Added", "Interviews",
        "Offers", "Hires", "Avg Time to Fill", "Score",
    ]
    rows = [
        [
            row["name"], row["specialty"], row["activeRoles"], row["cvsAdded"],
            row["interviewsScheduled"], row["offersMade"], row["hires"],
            row["avgTimeToFill"], row["productivityScore"],
        ]
        for row in data
    ]
    return [("Recruiter Productivity", headers, rows)]


def _panel_sections(data: List[Dict[str, Any]]) -> List[Section]:
    headers = ["Panel Name", "Interview Rounds", "Offer Percentage", "Top Rejection Reason", "Avg Feedback Time"]
    rows = [
        [row["panelName"], row["interviewRounds"], row["offerPercentage"], row["topRejectionReason"], row["avgFeedbackTime"]]
        for row in data
    ]
    return [("Panel Performance", headers, rows)]


def _drop_off_sections(data: Dict[str, Any]) -> List[Section]:
    rows = [
        [stage["stageName"], stage["dropOffCount"], stage["dropOffPercentage"]]
        for stage in data["byStage"]
    ]
    rows.append(["Highest Drop-off Stage", data["highestDropOffStage"] or "None", ""])
    return [("Drop-off Analysis", ["Stage", "Drop-off Count", "Drop-off Percentage"], rows)]


def _rejection_sections(data: Dict[str, Any]) -> List[Section]:
    rows = [[row["reason"], row["count"], row["percentage"]] for row in data["reasons"]]
    rows.append(["Top Stage for Rejection", data["topStageForRejection"] or "N/A", ""])
    return [("Rejection Reasons", ["Reason", "Count", "Percentage"], rows)]


def _offer_sections(data: Dict[str, Any]) -> List[Section]:
    overall = data["overall"]
    return [
        (
            "Offer Acceptance",
            ["Metric", "Value"],
            [
                ["Acceptance Rate", overall["acceptanceRate"]],
                ["Total Offers", overall["totalOffers"]],
                ["Accepted Offers", overall["acceptedOffers"]],
            ],
        ),
        (
            "Offer Acceptance by Department",
            ["Department", "Acceptance Rate", "Total Offers", "Accepted Offers"],
            [
                [row["department"] or "", row["acceptanceRate"], row["totalOffers"], row["acceptedOffers"]]
                for row in data["byDepartment"]
            ],
        ),
        (
            "Offer Acceptance by Role",
            ["Role", "Acceptance Rate", "Total Offers", "Accepted Offers", "Under Threshold"],
            [
                [row["roleName"], row["acceptanceRate"], row["totalOffers"], row["acceptedOffers"], _yes_no(row["isUnderThreshold"])]
                for row in data["byRole"]
            ],
        ),
    ]


def _sla_sections(data: Dict[str, Any]) -> List[Section]:
    summary = data["summary"]
    return [
        (
            "SLA Status Summary",
            ["Status", "Count"],
            [["On Track", summary["onTrack"]], ["At Risk", summary["atRisk"]], ["Breached", summary["breached"]]],
        ),
        (
            "SLA Status by Role",
            ["Role", "Status", "Days Open", "Threshold", "Candidates Breaching"],
            [
                [row["roleName"], row["status"], row["daysOpen"], row["threshold"], row["candidatesBreaching"]]
                for row in data["roles"]
            ],
        ),
    ]


def _overview_sections(data: Dict[str, Any]) -> List[Section]:
    return (
        _kpi_sections(data["kpis"])
        + _funnel_sections(data["funnel"])
        + _time_to_fill_sections(data["timeToFill"])
        + _source_sections(data["sources"])
        + _sla_sections(data["sla"])
    )


SECTION_BUILDERS: Dict[str, Callable[[Any], List[Section]]] = {
    "kpis": _kpi_sections,
    "funnel": _funnel_sections,
    "conversion": _conversion_sections,
    "time-to-fill": _time_to_fill_sections,
    "time-in-stage": _time_in_stage_sections,
    "sources": _source_sections,
    "recruiters": _recruiter_sections,
    "panels": _panel_sections,
    "drop-off": _drop_off_sections,
    "rejection-reasons": _rejection_sections,
    "offers": _offer_sections,
    "sla": _sla_sections,
    "overview": _overview_sections,
}


def render_csv(sections: List[Section]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for index, (title, headers, rows) in enumerate(sections):
        if index:
            writer.writerow([])
        writer.writerow([title])
        writer.writerow(headers)
        writer.writerows(rows)
    return buffer.getvalue()


def render_text(sections: List[Section]) -> str:
    """Fixed-width columns, one block per section."""
    blocks = []
    for title, headers, rows in sections:
        cells = [[str(value) for value in row] for row in [headers, *rows]]
        widths = [max(len(row[column]) for row in cells) for column in range(len(headers))]
        lines = [title, "=" * len(title)]
        for position, row in enumerate(cells):
            lines.append("  ".join(value.ljust(width) for value, width in zip(row, widths)).rstrip())
            if position == 0:
                lines.append("  ".join("-" * width for width in widths))
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def validate_export_request(report_type: str, fmt: str) -> None:
    """
    Raises:
        ValidationError: If the report type or format is unknown
    """
    errors: Dict[str, List[str]] = {}
    if report_type not in SECTION_BUILDERS:
        errors["report"] = [f"Unknown report type: {report_type}"]
    if fmt not in EXPORT_FORMATS:
        errors["format"] = [f"Format must be one of: {', '.join(EXPORT_FORMATS)}"]
    if errors:
        raise ValidationError(errors)


def export_report(report_type: str, data: Any, fmt: str = "csv") -> str:
    """
    Render a report dictionary.

    Args:
        report_type: Report key, e.g. "funnel" or "overview"
        data: The report as returned by the analytics service
        fmt: "csv" or "text"

    Returns:
        The rendered document

    Raises:
        ValidationError: If the report type or format is unknown
    """
    validate_export_request(report_type, fmt)
    sections = SECTION_BUILDERS[report_type](data)
    if fmt == "csv":
        return render_csv(sections)
    return render_text(sections)
