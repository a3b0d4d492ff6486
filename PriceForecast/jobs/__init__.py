from PriceForecast.jobs.controller import JobController, JobHandle, JobStatus, TrainingJob

__all__ = ["JobController", "JobHandle", "JobStatus", "TrainingJob"]
