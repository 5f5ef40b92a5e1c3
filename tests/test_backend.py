from flames.backend import INTERRUPTED_MESSAGE
from flames.job_service import JobStatus


def _job_in(jobs, *path):
    job_id = jobs.create("landing page", "base")
    for status in path:
        jobs.transition(job_id, status, f"{status.value}...")
    return job_id


def test_interrupted_jobs_are_failed_and_can_be_retried(backend_parts, jobs, make_generated_job):
    backend, runner = backend_parts["backend"], backend_parts["runner"]
    pending = _job_in(jobs)
    processing = _job_in(jobs, JobStatus.PROCESSING)
    generated = make_generated_job()

    recovered = backend.recover_interrupted_jobs()

    assert set(recovered) == {pending, processing}
    assert jobs.get(processing)["status"] == "failed"
    assert jobs.get(processing)["details"] == INTERRUPTED_MESSAGE
    assert jobs.get(generated)["status"] == "generated"

    backend.retry_job(processing)
    runner.run_all()
    assert jobs.get(processing)["status"] == "generated"


def test_interrupted_deploy_records_deployment_error(backend_parts, jobs):
    deploying = _job_in(jobs, JobStatus.PROCESSING, JobStatus.GENERATED, JobStatus.PACKAGING,
                        JobStatus.PACKAGED, JobStatus.DEPLOYING)
    packaging = _job_in(jobs, JobStatus.PROCESSING, JobStatus.GENERATED, JobStatus.PACKAGING)

    backend_parts["backend"].recover_interrupted_jobs()

    job = jobs.get(deploying)
    assert job["status"] == "failed"
    assert job["deployment"]["error"] == INTERRUPTED_MESSAGE
    assert jobs.get(packaging)["status"] == "failed"


def test_recovery_skips_jobs_with_work_in_flight(backend_parts, jobs):
    backend = backend_parts["backend"]
    job_id = backend.create_job("landing page", "base")

    assert backend.recover_interrupted_jobs() == []
    assert jobs.get(job_id)["status"] == "pending"
