"""Tests for CommitTracker deduplication and lifecycle."""

import pytest


def _result(commit_id, analysis_id, status, error=None):
    from commitguard.events.schemas import AnalysisResultMessage

    return AnalysisResultMessage(
        analysis_id=analysis_id,
        commit_id=commit_id,
        repository_id="github-123456",
        status=status,
        error=error,
    )


@pytest.fixture
def tracker(stores, memory_bus):
    from commitguard.services.commit_tracker import CommitTracker

    return CommitTracker(stores, memory_bus)


class TestTrack:
    """Tests for tracking new commits."""

    @pytest.mark.asyncio
    async def test_new_commit_is_queued_and_published(
        self, mock_env_vars, tracker, stores, memory_bus, github_repository, make_commit
    ):
        """Test a new commit is persisted, published and QUEUED."""
        from commitguard.events.topics import TOPIC_COMMIT_ANALYSIS
        from commitguard.models import AnalysisStatus

        results = await tracker.track_push(github_repository, [make_commit()])

        assert len(results) == 1
        assert results[0].status == AnalysisStatus.QUEUED
        assert results[0].published is True
        assert results[0].duplicate is False

        stored = await stores.commits.find("a1b2c3d4e5f6")
        assert stored.status == AnalysisStatus.QUEUED
        assert stored.analysis_id == results[0].analysis_id

        messages = memory_bus.messages(TOPIC_COMMIT_ANALYSIS)
        assert len(messages) == 1
        assert messages[0].key == "a1b2c3d4e5f6"
        assert messages[0].value["analysisId"] == results[0].analysis_id
        assert messages[0].value["filesModified"] == "src/Handler.java"
        assert messages[0].value["analysisStatus"] == "QUEUED"

    @pytest.mark.asyncio
    async def test_repository_registered(self, mock_env_vars, tracker, stores, github_repository, make_commit):
        """Test the push registers its repository under the natural key."""
        await tracker.track_push(github_repository, [make_commit()])

        stored = await stores.repositories.find("github-123456")
        assert stored is not None
        assert stored.full_name == "acme/payments-service"

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_noop(
        self, mock_env_vars, tracker, stores, memory_bus, github_repository, make_commit
    ):
        """Test a second delivery of the same commit neither republishes nor changes state."""
        from commitguard.events.topics import TOPIC_COMMIT_ANALYSIS
        from commitguard.models import AnalysisStatus

        first = await tracker.track_push(github_repository, [make_commit()])
        second = await tracker.track_push(github_repository, [make_commit(message="redelivered")])

        assert second[0].duplicate is True
        assert second[0].published is False
        assert second[0].analysis_id == first[0].analysis_id
        assert len(memory_bus.messages(TOPIC_COMMIT_ANALYSIS)) == 1

        stored = await stores.commits.find("a1b2c3d4e5f6")
        assert stored.status == AnalysisStatus.QUEUED
        assert stored.event.message == "Add payment handler"

    @pytest.mark.asyncio
    async def test_publish_failure_marks_failed(
        self, mock_env_vars, tracker, stores, memory_bus, github_repository, make_commit
    ):
        """Test an unavailable bus fails the commit without retrying."""
        from commitguard.models import AnalysisStatus
        from commitguard.services.commit_tracker import PUBLISH_FAILED

        memory_bus.available = False

        results = await tracker.track_push(github_repository, [make_commit()])

        assert results[0].status == AnalysisStatus.FAILED
        assert results[0].published is False
        stored = await stores.commits.find("a1b2c3d4e5f6")
        assert stored.status == AnalysisStatus.FAILED
        assert stored.error == PUBLISH_FAILED


    @pytest.mark.asyncio
    async def test_result_before_publish_returns_keeps_completed(
        self, mock_env_vars, stores, github_repository, make_commit
    ):
        """Test a result handled while the publish is still awaiting its ack is not overwritten."""
        from commitguard.events.bus import InMemoryEventBus
        from commitguard.models import AnalysisStatus
        from commitguard.services.commit_tracker import CommitTracker

        class FastWorkerBus(InMemoryEventBus):
            async def publish(self, topic, key, message):
                await tracker.handle_result(
                    _result(message.commit_id, message.analysis_id, AnalysisStatus.COMPLETED)
                )
                return True

        tracker = CommitTracker(stores, FastWorkerBus())

        [result] = await tracker.track_push(github_repository, [make_commit()])

        assert result.published is True
        stored = await stores.commits.find("a1b2c3d4e5f6")
        assert stored.status == AnalysisStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_reprocess_with_fast_result_keeps_completed(
        self, mock_env_vars, stores, memory_bus, github_repository, make_commit
    ):
        """Test reprocess does not regress a commit the analyzer finished during publish."""
        from commitguard.events.bus import InMemoryEventBus
        from commitguard.models import AnalysisStatus
        from commitguard.services.commit_tracker import CommitTracker

        memory_bus.available = False
        await CommitTracker(stores, memory_bus).track_push(github_repository, [make_commit()])

        class FastWorkerBus(InMemoryEventBus):
            async def publish(self, topic, key, message):
                await tracker.handle_result(
                    _result(message.commit_id, message.analysis_id, AnalysisStatus.COMPLETED)
                )
                return True

        tracker = CommitTracker(stores, FastWorkerBus())

        await tracker.reprocess("a1b2c3d4e5f6")

        stored = await stores.commits.find("a1b2c3d4e5f6")
        assert stored.status == AnalysisStatus.COMPLETED
        assert stored.error is None


class TestHandleResult:
    """Tests for closing commits out from analysis results."""

    @pytest.mark.asyncio
    async def test_completed_result(self, mock_env_vars, tracker, stores, github_repository, make_commit):
        """Test a COMPLETED result completes the commit."""
        from commitguard.models import AnalysisStatus

        [tracked] = await tracker.track_push(github_repository, [make_commit()])

        updated = await tracker.handle_result(
            _result("a1b2c3d4e5f6", tracked.analysis_id, AnalysisStatus.COMPLETED)
        )

        assert updated.status == AnalysisStatus.COMPLETED
        assert (await stores.commits.find("a1b2c3d4e5f6")).status == AnalysisStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_result_keeps_error(self, mock_env_vars, tracker, github_repository, make_commit):
        """Test a FAILED result records the error text."""
        from commitguard.models import AnalysisStatus

        [tracked] = await tracker.track_push(github_repository, [make_commit()])

        updated = await tracker.handle_result(
            _result("a1b2c3d4e5f6", tracked.analysis_id, AnalysisStatus.FAILED, error="boom")
        )

        assert updated.status == AnalysisStatus.FAILED
        assert updated.error == "boom"

    @pytest.mark.asyncio
    async def test_redelivered_result_is_noop(self, mock_env_vars, tracker, github_repository, make_commit):
        """Test a terminal commit ignores later results."""
        from commitguard.models import AnalysisStatus

        [tracked] = await tracker.track_push(github_repository, [make_commit()])
        await tracker.handle_result(_result("a1b2c3d4e5f6", tracked.analysis_id, AnalysisStatus.COMPLETED))

        again = await tracker.handle_result(
            _result("a1b2c3d4e5f6", tracked.analysis_id, AnalysisStatus.FAILED, error="late")
        )

        assert again.status == AnalysisStatus.COMPLETED
        assert again.error is None

    @pytest.mark.asyncio
    async def test_unknown_commit_discarded(self, mock_env_vars, tracker):
        """Test a result for an unknown commit is dropped without raising."""
        from commitguard.models import AnalysisStatus

        assert await tracker.handle_result(_result("deadbeef", "analysis-x", AnalysisStatus.COMPLETED)) is None

    @pytest.mark.asyncio
    async def test_superseded_analysis_ignored(self, mock_env_vars, tracker, stores, github_repository, make_commit):
        """Test a result from an older analysis id does not touch the commit."""
        from commitguard.models import AnalysisStatus

        await tracker.track_push(github_repository, [make_commit()])

        assert await tracker.handle_result(
            _result("a1b2c3d4e5f6", "analysis-old", AnalysisStatus.FAILED)
        ) is None
        assert (await stores.commits.find("a1b2c3d4e5f6")).status == AnalysisStatus.QUEUED

    @pytest.mark.asyncio
    async def test_undecodable_record_dead_lettered(self, mock_env_vars, tracker, memory_bus):
        """Test a malformed result record goes to the DLQ."""
        from commitguard.events.bus import Record
        from commitguard.events.topics import TOPIC_ANALYSIS_RESULTS, TOPIC_DLQ

        await tracker.handle(Record(topic=TOPIC_ANALYSIS_RESULTS, partition=0, offset=0, key="k", value={"x": 1}))

        [dead] = memory_bus.messages(TOPIC_DLQ)
        assert dead.value["originalTopic"] == TOPIC_ANALYSIS_RESULTS
        assert dead.value["consumerGroup"] == "commitguard-tracker"
        assert dead.value["payload"] == {"x": 1}


class TestReprocess:
    """Tests for operator reprocessing and triggers."""

    @pytest.mark.asyncio
    async def test_reprocess_failed_commit(
        self, mock_env_vars, tracker, stores, memory_bus, github_repository, make_commit
    ):
        """Test a FAILED commit is republished under a new analysis id."""
        from commitguard.events.topics import TOPIC_COMMIT_ANALYSIS
        from commitguard.models import AnalysisStatus

        memory_bus.available = False
        [failed] = await tracker.track_push(github_repository, [make_commit()])
        memory_bus.available = True

        result = await tracker.reprocess("a1b2c3d4e5f6")

        assert result.status == AnalysisStatus.QUEUED
        assert result.analysis_id != failed.analysis_id
        stored = await stores.commits.find("a1b2c3d4e5f6")
        assert stored.error is None
        assert len(memory_bus.messages(TOPIC_COMMIT_ANALYSIS)) == 1

    @pytest.mark.asyncio
    async def test_reprocess_in_flight_rejected(self, mock_env_vars, tracker, github_repository, make_commit):
        """Test a QUEUED commit cannot be reprocessed."""
        from commitguard.exceptions import ValidationError

        await tracker.track_push(github_repository, [make_commit()])

        with pytest.raises(ValidationError):
            await tracker.reprocess("a1b2c3d4e5f6")

    @pytest.mark.asyncio
    async def test_reprocess_unknown_commit(self, mock_env_vars, tracker):
        """Test an unknown commit raises ValidationError."""
        from commitguard.exceptions import ValidationError

        with pytest.raises(ValidationError):
            await tracker.reprocess("nope")

    @pytest.mark.asyncio
    async def test_trigger_returns_in_flight_analysis(self, mock_env_vars, tracker, github_repository, make_commit):
        """Test triggering a repository with a queued commit returns its analysis id."""
        [tracked] = await tracker.track_push(github_repository, [make_commit()])

        assert await tracker.trigger_analysis("github-123456") == tracked.analysis_id

    @pytest.mark.asyncio
    async def test_trigger_completed_commit(self, mock_env_vars, tracker, memory_bus, github_repository, make_commit):
        """Test triggering after completion dispatches a fresh analysis."""
        from commitguard.events.topics import TOPIC_COMMIT_ANALYSIS
        from commitguard.models import AnalysisStatus

        [tracked] = await tracker.track_push(github_repository, [make_commit()])
        await tracker.handle_result(_result("a1b2c3d4e5f6", tracked.analysis_id, AnalysisStatus.COMPLETED))

        analysis_id = await tracker.trigger_analysis("github-123456")

        assert analysis_id != tracked.analysis_id
        assert len(memory_bus.messages(TOPIC_COMMIT_ANALYSIS)) == 2

    @pytest.mark.asyncio
    async def test_trigger_without_commits(self, mock_env_vars, tracker):
        """Test triggering a repository with no commits raises ValidationError."""
        from commitguard.exceptions import ValidationError

        with pytest.raises(ValidationError):
            await tracker.trigger_analysis("github-999")
