"""Image generation adapter package.

Scope:
    HTTP transport for job-based image backends: endpoint configuration,
    per-endpoint rate limiting, submit/poll client, result download/decode,
    the single-component `GenerativeImage` caller, and the RunPod runner.

Non-goals:
    - No on-disk caching or persistence of generated images.
    - No retries; transient failures surface to the caller.
"""
