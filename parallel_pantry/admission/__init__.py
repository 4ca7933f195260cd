from .audit import AuditResult, Auditor, ReplyAuditor, parse_audit_reply, payout_for_score
from .gate import AdmissionGate, AdmissionPolicy, check_request

__all__ = [
    "AuditResult",
    "Auditor",
    "ReplyAuditor",
    "parse_audit_reply",
    "payout_for_score",
    "AdmissionGate",
    "AdmissionPolicy",
    "check_request",
]
