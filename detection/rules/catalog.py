"""Canonical rule table, one entry per monitored event log type.

Thresholds here are the shipped defaults.  Deployments tune them through
an override file (see rules/loader.py) rather than by editing this table.
"""

from detection.rules import RiskRule

HIGH_RISK_QUIDDITY = ("A", "X", "W")

DEFAULT_RULES = [
    RiskRule(
        event_type="ReportExport",
        description="Report Export",
        severity="critical",
        threshold=1,
        time_window="day",
        count_field="REPORT_ID",
        rationale="Every report export is a potential data exfiltration risk",
    ),
    RiskRule(
        event_type="DocumentAttachmentDownloads",
        description="Document Download",
        severity="critical",
        threshold=1,
        time_window="hour",
        count_field="DOCUMENT_ID",
        rationale="Every document download is a potential data exfiltration risk",
        detector="download_tracker",
        detector_options={"severity_multiplier": 2.0},
    ),
    RiskRule(
        event_type="ContentDocumentLink",
        description="Excessive Internal Sharing",
        severity="medium",
        threshold=20,
        time_window="day",
        count_field="RELATED_RECORD_ID",
        rationale="Excessive internal sharing may indicate staging for exfiltration",
        detector="rate",
        detector_options={"min_count": 20, "label": "content sharing", "unit": "shares"},
    ),
    RiskRule(
        event_type="ContentDistribution",
        description="Public Sharing Activity",
        severity="critical",
        threshold=5,
        time_window="day",
        count_field="CONTENT_ID",
        rationale="Significant data exposure risk",
    ),
    RiskRule(
        event_type="Login",
        description="Multiple IP Logins",
        severity="high",
        threshold=3,
        time_window="day",
        count_field="SOURCE_IP",
        rationale="Could indicate compromised credentials",
    ),
    RiskRule(
        event_type="LoginAs",
        description="Admin Impersonation",
        severity="high",
        threshold=1,
        rationale="Admin impersonation warrants review",
    ),
    RiskRule(
        event_type="Sites",
        description="Internal Access via Guest User",
        severity="high",
        threshold=3,
        rationale="May indicate misuse of public access",
        detector="keyword",
        detector_options={
            "field": "ACTION",
            "keywords": ["create", "update", "delete"],
            "message": "Guest user performed {value} operation",
            "severity_multiplier": 2,
        },
    ),
    RiskRule(
        event_type="Search",
        description="Excessive Search Activity",
        severity="high",
        threshold=100,
        time_window="hour",
        rationale="Bulk recon activity",
        detector="rate",
        detector_options={"min_count": 100, "label": "search", "unit": "searches"},
    ),
    RiskRule(
        event_type="ApexCallout",
        description="High Volume External Callouts",
        severity="high",
        threshold=30,
        time_window="hour",
        count_field="ENDPOINT_URL",
        rationale="May indicate external data exfiltration",
        detector="endpoint_allowlist",
        detector_options={
            "allowed_domains": ["api.salesforce.com", "yourcompany.com"],
            "severity_multiplier": 2,
        },
    ),
    RiskRule(
        event_type="VisualforceRequest",
        description="Possible Page Scraping",
        severity="high",
        threshold=100,
        time_window="hour",
        count_field="PAGE_NAME",
        rationale="Possible scraping or automation",
        detector="rate",
        detector_options={"min_count": 100, "label": "Visualforce request", "unit": "requests"},
    ),
    RiskRule(
        event_type="AuraRequest",
        description="Excessive Component Loading",
        severity="high",
        threshold=800,
        time_window="hour",
        count_field="COMPONENT_NAME",
        rationale="Possible scraping or automation (Lightning specific)",
        detector="rate",
        detector_options={"min_count": 800, "label": "AuraRequest", "unit": "requests"},
    ),
    RiskRule(
        event_type="LightningPageView",
        description="Unusual Page View Volume",
        severity="high",
        threshold=200,
        time_window="hour",
        count_field="PAGE_ENTITY_TYPE",
        rationale="Recon or bulk record viewing",
        detector="rate",
        detector_options={"min_count": 200, "label": "Lightning page view", "unit": "views"},
    ),
    RiskRule(
        event_type="Dashboard",
        description="Multiple Dashboard Access",
        severity="medium",
        threshold=100,
        time_window="hour",
        rationale="Unusual recon or data collection",
        detector="rate",
        detector_options={
            "min_count": 100,
            "label": "Dashboard access",
            "unit": "requests",
            "min_span_seconds": 5,
            "min_per_minute": 20,
            "distinct_field": "DASHBOARD_ID",
            "distinct_label": "dashboards",
        },
    ),
    RiskRule(
        event_type="AsyncReportRun",
        description="Background Report Execution",
        severity="critical",
        threshold=1,
        time_window="day",
        rationale="Every background report execution is a potential data staging risk",
    ),
    RiskRule(
        event_type="FlowExecution",
        description="Manual Flow Trigger",
        severity="high",
        threshold=3,
        count_field="FLOW_NAME",
        rationale="Direct process manipulation",
        detector="keyword",
        detector_options={
            "field": "FLOW_NAME",
            "keywords": ["admin", "delete", "purge", "mass", "bulk"],
            "message": "Sensitive flow executed: {value}",
            "severity_multiplier": 2,
        },
    ),
    RiskRule(
        event_type="ApexExecution",
        description="Direct Apex Execution",
        severity="critical",
        threshold=3,
        count_field="QUIDDITY",
        count_values=HIGH_RISK_QUIDDITY,
        rationale="Possible direct manipulation or abuse",
        detector="apex_execution",
        detector_options={"min_count": 3, "high_risk_types": list(HIGH_RISK_QUIDDITY)},
    ),
    RiskRule(
        event_type="ApexTriggerExecution",
        description="Apex Trigger Spike",
        severity="medium",
        threshold=150,
        time_window="day",
        count_field="TRIGGER_NAME",
        rationale="Unusual mass-trigger events",
    ),
    RiskRule(
        event_type="ApiAnomalyEventStore",
        description="API Anomaly Detected",
        severity="critical",
        threshold=3,
        rationale="Salesforce detected platform anomaly",
        detector="platform_anomaly",
        detector_options={"severity_multiplier": 3},
    ),
    RiskRule(
        event_type="BulkApiRequest",
        description="Bulk API Usage",
        severity="medium",
        threshold=10,
        time_window="day",
        count_field="OPERATION_TYPE",
        rationale="Mass data operations through API",
        detector="bulk_volume",
        detector_options={"max_records": 10000, "severity_multiplier": 2},
    ),
    RiskRule(
        event_type="PermissionSetAssignment",
        description="Permission Changes",
        severity="high",
        threshold=3,
        rationale="Permission changes could indicate privilege escalation",
        detector="keyword",
        detector_options={
            "field": "PERMISSION_SET_NAME",
            "keywords": ["admin", "manage", "delete", "all"],
            "message": "High privilege permission set assigned: {value}",
            "severity_multiplier": 2.5,
        },
    ),
    RiskRule(
        event_type="LightningError",
        description="Unusual Error Rate",
        severity="medium",
        threshold=30,
        time_window="hour",
        count_field="ERROR_TYPE",
        rationale="High error rates may indicate attempted exploitation",
    ),
    RiskRule(
        event_type="LogoutEvent",
        description="Unusual Logout Pattern",
        severity="low",
        threshold=15,
        time_window="day",
        rationale="Excessive login/logout cycles may indicate session harvesting",
    ),
    RiskRule(
        event_type="DataExport",
        description="Organization Data Export",
        severity="critical",
        threshold=1,
        rationale="Every org data export is a critical security event",
    ),
]
