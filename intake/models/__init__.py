from intake.models.remote_submission import RemoteSubmission

__all__ = [
    "RemoteSubmission",
]
