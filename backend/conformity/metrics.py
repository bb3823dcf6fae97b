from prometheus_client import Counter

# purpose: domain counters exposed on /metrics next to the request metrics
# status: active

TEST_TRANSITIONS = Counter(
    "test_transitions_total", "Applied test lifecycle transitions", ["transition"]
)
NONCONFORMITIES_OPENED = Counter(
    "nonconformities_opened_total", "Non-conformities opened", ["origin"]
)
