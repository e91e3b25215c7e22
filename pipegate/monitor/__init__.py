"""pipegate terminal presentation.

Modules
-------
renderer
    ``PipelineRenderer`` turns discovered projects, stage plans and run
    summaries into Rich tables and panels.
"""
