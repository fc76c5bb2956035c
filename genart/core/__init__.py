"""Core job-orchestration package.

Architectural role:
    Holds the domain model and the concurrency seams shared by every image
    backend: job data contracts, the per-job lifecycle, error taxonomy, the
    dual-context executor, task events, and the task registry.

Composition:
    - `errors`: Exception hierarchy for every failure mode.
    - `lifecycle`: Per-job state machine.
    - `job_types`: Endpoint config, request, result, and status shapes.
    - `executor`: Worker pool plus hand-off onto the owning event loop.
    - `task_events`: Six-channel observer lists with aggregate forwarding.
    - `registry`: Tracked tasks, cancellation, and exactly-once outcomes.

Determinism and side effects:
    Package import itself is side-effect free.
"""
