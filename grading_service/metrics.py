from prometheus_client import Counter, Histogram

GRADING_REQUESTS = Counter(
    "grading_requests_total",
    "Run and submit requests handled by the grading pipeline",
    ["operation", "language"],
)

TEST_CASE_OUTCOMES = Counter(
    "grading_test_case_outcomes_total",
    "Per test case grading outcomes",
    ["language", "outcome"],
)

SANDBOX_EXECUTION_SECONDS = Histogram(
    "grading_sandbox_execution_seconds",
    "Wall-clock time of a single sandboxed test case execution",
    ["language"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

SUBMISSIONS_PERSISTED = Counter(
    "grading_submissions_persisted_total",
    "Code submissions written to the database",
    ["language", "passed"],
)
