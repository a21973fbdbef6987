"""
Prometheus counters, scraped from /metrics.
"""
from prometheus_client import Counter

LOGIN_ATTEMPTS = Counter(
    "lendguard_login_attempts_total",
    "Login attempts by outcome",
    ["outcome"],  # success | invalid_credentials | locked | unknown_identity
)

ACCOUNT_LOCKOUTS = Counter(
    "lendguard_account_lockouts_total",
    "Accounts locked after repeated failed logins",
)

RISK_EVALUATIONS = Counter(
    "lendguard_risk_evaluations_total",
    "Risk evaluations by category and verdict",
    ["category", "verdict"],
)

LEDGER_WRITE_FAILURES = Counter(
    "lendguard_audit_write_failures_total",
    "Audit ledger writes that failed",
    ["path"],  # critical | best_effort
)
