"""
Export services: scheduling, render parameters, media storage and lookup.

ExportService owns job state and the render queue. The other modules are
collaborators it calls while starting a job, plus the upload store used
by the media routes.
"""
