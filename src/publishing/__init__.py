"""PostRelay publishing pipeline.

Submodules:
- ``admission``: request validation, task persistence and scheduling
- ``worker``: the retrying publish attempt
- ``callbacks``: status callback queueing, delivery and administration
- ``media``: hero image download
- ``notifications``: operator alerts on permanent failure
- ``sanitizer``: markup and text sanitization
- ``stores``: typed task and callback storage
- ``services``: component wiring
"""
