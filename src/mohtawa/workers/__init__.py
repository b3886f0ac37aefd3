"""Worker utilities for durable execution.

With ``JOB_DISPATCHER=db`` the API enqueues run and render jobs to the
database and worker processes claim and execute them. The loop lives in
:mod:`mohtawa.workers.worker`; it is imported from there directly because the
executors depend on :mod:`mohtawa.workers.job_types`.
"""
