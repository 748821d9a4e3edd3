"""
Unit tests for UploadScheduleRepository.
"""
import pytest
from datetime import datetime, timedelta, timezone

from republisher.database.models import UploadJob, UploadStatus
from republisher.repositories.upload_schedule_repository import UploadScheduleRepository


async def add_job(session, episode, scheduled_at, status=UploadStatus.PENDING, retry_count=0):
    job = UploadJob(
        episode_id=episode.id,
        series_id=episode.series_id,
        scheduled_at=scheduled_at,
        status=status,
        retry_count=retry_count,
    )
    session.add(job)
    await session.commit()
    return job


@pytest.mark.unit
class TestUploadScheduleRepository:
    """Test cases for UploadScheduleRepository."""

    @pytest.fixture
    def repo(self, test_session):
        return UploadScheduleRepository(test_session)

    @pytest.fixture
    async def series(self, test_session, test_data_factory):
        return await test_data_factory.create_series(test_session, episode_count=4, downloaded=4)

    @pytest.mark.asyncio
    async def test_get_next_due_orders_by_time_then_id(self, repo, test_session, series):
        """Test the earliest due job wins and ties fall back to id."""
        now = datetime.now(timezone.utc)
        earlier = now - timedelta(hours=2)
        later = now - timedelta(hours=1)

        await add_job(test_session, series.episodes[0], later)
        first = await add_job(test_session, series.episodes[1], earlier)
        await add_job(test_session, series.episodes[2], earlier)

        job = await repo.get_next_due(now)

        assert job.id == first.id
        assert job.episode.index_sequence == 2
        assert job.series.title == "Test Series"

    @pytest.mark.asyncio
    async def test_get_next_due_filters(self, repo, test_session, series):
        """Test future, finished and exhausted jobs are never selected."""
        now = datetime.now(timezone.utc)
        past = now - timedelta(hours=1)

        await add_job(test_session, series.episodes[0], now + timedelta(hours=1))
        await add_job(test_session, series.episodes[1], past, status=UploadStatus.COMPLETED)
        await add_job(test_session, series.episodes[2], past, status=UploadStatus.SKIPPED, retry_count=3)
        await add_job(test_session, series.episodes[3], past, status=UploadStatus.FAILED, retry_count=3)

        assert await repo.get_next_due(now) is None

    @pytest.mark.asyncio
    async def test_failed_job_with_attempts_left_is_due(self, repo, test_session, series):
        """Test a failed job below the attempt limit is picked again."""
        now = datetime.now(timezone.utc)
        failed = await add_job(test_session, series.episodes[0], now - timedelta(minutes=5),
                               status=UploadStatus.FAILED, retry_count=2)

        job = await repo.get_next_due(now)

        assert job.id == failed.id

    @pytest.mark.asyncio
    async def test_update_status_increments_retry(self, repo, test_session, series):
        """Test retry_count only moves up through failure handling."""
        job = await add_job(test_session, series.episodes[0], datetime.now(timezone.utc))

        await repo.update_status(job.id, UploadStatus.FAILED, error="timeout", increment_retry=True)
        await repo.update_status(job.id, UploadStatus.FAILED, error="timeout", increment_retry=True)

        assert await repo.get_retry_count(job.id) == 2
        await test_session.refresh(job)
        assert job.status == UploadStatus.FAILED
        assert job.error_message == "timeout"
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_update_status_completed(self, repo, test_session, series):
        """Test completion records the remote id and progress."""
        job = await add_job(test_session, series.episodes[0], datetime.now(timezone.utc))

        await repo.update_status(job.id, UploadStatus.UPLOADING, progress=0)
        await repo.update_status(job.id, UploadStatus.COMPLETED, progress=100, remote_video_id="x8abc")

        await test_session.refresh(job)
        assert job.status == UploadStatus.COMPLETED
        assert job.upload_progress == 100
        assert job.remote_video_id == "x8abc"
        assert job.started_at is not None
        assert job.retry_count == 0

    @pytest.mark.asyncio
    async def test_list_schedule_groups_by_series(self, repo, test_session, series, test_data_factory):
        """Test listing counts statuses and groups items per series."""
        other = await test_data_factory.create_series(test_session, episode_count=1, title="Other", downloaded=1)
        base = datetime.now(timezone.utc)
        await add_job(test_session, series.episodes[0], base)
        await add_job(test_session, series.episodes[1], base + timedelta(hours=1), status=UploadStatus.COMPLETED)
        await add_job(test_session, other.episodes[0], base + timedelta(hours=2), status=UploadStatus.SKIPPED)

        schedule = await repo.list_schedule()

        assert schedule["total"] == 3
        assert schedule["pending"] == 1
        assert schedule["completed"] == 1
        assert schedule["skipped"] == 1
        assert [group["series_title"] for group in schedule["by_series"]] == ["Test Series", "Other"]
        assert len(schedule["by_series"][0]["episodes"]) == 2

        filtered = await repo.list_schedule(other.id)
        assert filtered["total"] == 1

    @pytest.mark.asyncio
    async def test_remove_for_series_keeps_history(self, repo, test_session, series):
        """Test only pending and failed rows are removed."""
        now = datetime.now(timezone.utc)
        await add_job(test_session, series.episodes[0], now, status=UploadStatus.PENDING)
        await add_job(test_session, series.episodes[1], now, status=UploadStatus.FAILED, retry_count=1)
        await add_job(test_session, series.episodes[2], now, status=UploadStatus.COMPLETED)
        await add_job(test_session, series.episodes[3], now, status=UploadStatus.SKIPPED, retry_count=3)

        removed = await repo.remove_for_series(series.id)

        assert removed == 2
        remaining = await repo.list_schedule(series.id)
        assert remaining["completed"] == 1
        assert remaining["skipped"] == 1
        assert remaining["pending"] == 0 and remaining["failed"] == 0
