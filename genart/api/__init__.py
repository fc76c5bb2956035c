"""genart entrypoint adapter package.

Architectural role:
- Defines the command-line boundary for submitting generation jobs.
- Performs argument validation and output shaping only.
- Delegates job orchestration to the core layer.
"""
