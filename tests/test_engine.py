"""Tests for the resource reconciliation engine."""

import pytest
from aws_mock import client_error
from fakes import THING_KIND, FakeResource, quick_engine, quick_options

from deployer.engine import ReconcileAction, ReconcileOptions, ReconcileState, ResourceEngine
from deployer.errors import ConvergenceError, FatalError, NotFoundError, SkippedAction
from deployer.policy import PermissionCollector
from deployer.progress import ProgressAction, RecordingReporter
from deployer.retry import RetryPolicy


class TestCreateAndUpdate:
    """Tests for the create-vs-update decision."""

    @pytest.mark.asyncio
    async def test_missing_resource_is_created(self) -> None:
        """Test that a missing resource is created and re-read."""
        resource = FakeResource()
        reporter = RecordingReporter()

        result = await quick_engine(reporter).reconcile(resource.descriptor(), quick_options())

        assert resource.calls == ["read", "create", "read"]
        assert result.action == ReconcileAction.CREATED
        assert result.state == ReconcileState.READY
        assert result.resource["arn"] == resource.arn
        assert result.name == "Thing (one)"
        assert reporter.actions_for(THING_KIND) == [
            ProgressAction.READING,
            ProgressAction.CREATING,
            ProgressAction.CREATED,
        ]

    @pytest.mark.asyncio
    async def test_existing_resource_is_updated(self) -> None:
        """Test that an existing resource goes through update, not create."""
        resource = FakeResource(exists=True)

        result = await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert resource.calls == ["read", "update", "read"]
        assert result.action == ReconcileAction.UPDATED
        assert result.resource["name"] == "one"

    @pytest.mark.asyncio
    async def test_existing_resource_without_update_is_unchanged(self) -> None:
        """Test that a kind without update leaves an existing resource alone."""
        resource = FakeResource(exists=True)

        result = await quick_engine().reconcile(resource.descriptor(update=None), quick_options())

        assert resource.calls == ["read"]
        assert result.action == ReconcileAction.UNCHANGED
        assert result.resource["arn"] == resource.arn

    @pytest.mark.asyncio
    async def test_second_run_creates_nothing(self) -> None:
        """Test that reconciling twice creates the resource once."""
        resource = FakeResource()
        descriptor = resource.descriptor(update=None)
        engine = quick_engine()

        first = await engine.reconcile(descriptor, quick_options())
        second = await engine.reconcile(descriptor, quick_options())

        assert first.action == ReconcileAction.CREATED
        assert second.action == ReconcileAction.UNCHANGED
        assert resource.count("create") == 1
        assert first.resource == second.resource

    @pytest.mark.asyncio
    async def test_missing_resource_without_create_fails(self) -> None:
        """Test that a missing resource of a non-creatable kind is fatal."""
        resource = FakeResource()

        with pytest.raises(FatalError) as exc_info:
            await quick_engine().reconcile(resource.descriptor(create=None), quick_options())

        assert "cannot be created" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_update_not_found_falls_back_to_create(self) -> None:
        """Test that a resource deleted between read and update is recreated."""
        resource = FakeResource(exists=True)
        resource.update_errors.append(NotFoundError("deleted out of band"))

        result = await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert resource.calls == ["read", "update", "create", "read"]
        assert result.action == ReconcileAction.CREATED

    @pytest.mark.asyncio
    async def test_update_provider_not_found_falls_back_to_create(self) -> None:
        """Test that a provider 404 during update also triggers a create."""
        resource = FakeResource(exists=True)
        resource.update_errors.append(client_error("ResourceNotFoundException", 404, "UpdateThing"))

        result = await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert result.action == ReconcileAction.CREATED
        assert resource.count("create") == 1

    @pytest.mark.asyncio
    async def test_create_notice(self) -> None:
        """Test that a create sends a user-facing notice."""
        notices: list[tuple[str, str]] = []
        resource = FakeResource()

        await quick_engine().reconcile(
            resource.descriptor(),
            quick_options(notify=lambda message, level: notices.append((message, level))),
        )

        assert notices == [("Created Thing (one)", "notice")]


class TestConvergence:
    """Tests for waiting on eventually consistent state."""

    @pytest.mark.asyncio
    async def test_waits_until_desired_state(self) -> None:
        """Test that N mismatching reads lead to N+1 reads after create."""
        resource = FakeResource(pending_reads=3)
        reporter = RecordingReporter()
        sleeps: list[float] = []

        async def sleep(seconds: float) -> None:
            sleeps.append(seconds)

        engine = ResourceEngine(reporter, sleep=sleep)
        result = await engine.reconcile(resource.descriptor(), quick_options(retries=5))

        assert resource.calls == ["read", "create", "read", "read", "read", "read"]
        assert len(sleeps) == 3
        assert result.resource["state"] == "ready"
        assert reporter.actions_for(THING_KIND).count(ProgressAction.WAITING) == 1

    @pytest.mark.asyncio
    async def test_budget_exhausted_raises_convergence_error(self) -> None:
        """Test that a resource that never settles fails with the mismatched fields."""
        resource = FakeResource(pending_reads=10)
        reporter = RecordingReporter()

        with pytest.raises(ConvergenceError) as exc_info:
            await quick_engine(reporter).reconcile(resource.descriptor(), quick_options(retries=2))

        assert "State" in exc_info.value.differences
        assert exc_info.value.differences["State"].actual == "pending"
        assert resource.count("read") == 1 + 3
        assert reporter.actions_for(THING_KIND)[-1] == ProgressAction.FAILED

    @pytest.mark.asyncio
    async def test_convergence_error_is_fatal(self) -> None:
        """Test that convergence failures are reported as fatal errors."""
        resource = FakeResource(pending_reads=5)
        notices: list[tuple[str, str]] = []

        with pytest.raises(FatalError):
            await quick_engine().reconcile(
                resource.descriptor(),
                quick_options(retries=0, notify=lambda message, level: notices.append((message, level))),
            )

        assert notices[-1][1] == "error"

    @pytest.mark.asyncio
    async def test_unbounded_retries_wait_as_long_as_needed(self) -> None:
        """Test that an unbounded policy keeps reading until converged."""
        resource = FakeResource(pending_reads=25)
        options = ReconcileOptions(
            retries=RetryPolicy.unbounded(0.0),
            mutation_retries=RetryPolicy.bounded(0, 0.0),
        )

        result = await quick_engine().reconcile(resource.descriptor(), options)

        assert result.action == ReconcileAction.CREATED
        assert resource.count("read") == 1 + 26

    @pytest.mark.asyncio
    async def test_unbounded_retries_survive_long_waits(self) -> None:
        """Test that backoff stays finite past a thousand convergence reads."""
        resource = FakeResource(pending_reads=1100)
        options = ReconcileOptions(
            retries=RetryPolicy.unbounded(0.0),
            mutation_retries=RetryPolicy.bounded(0, 0.0),
        )

        result = await quick_engine().reconcile(resource.descriptor(), options)

        assert result.action == ReconcileAction.CREATED
        assert resource.count("read") == 1 + 1101

    @pytest.mark.asyncio
    async def test_not_visible_after_create_is_tolerated(self) -> None:
        """Test that not-found right after a create counts as not converged."""
        resource = FakeResource(invisible_reads=2)

        result = await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert result.action == ReconcileAction.CREATED
        assert resource.count("read") == 1 + 3

    @pytest.mark.asyncio
    async def test_desired_from_options(self) -> None:
        """Test that options.desired applies when the descriptor has none."""
        resource = FakeResource(pending_reads=1)

        await quick_engine().reconcile(
            resource.descriptor(desired=None),
            quick_options(desired={"State": "ready"}),
        )

        assert resource.count("read") == 1 + 2

    @pytest.mark.asyncio
    async def test_no_desired_state_reads_once(self) -> None:
        """Test that without a desired state the first post-create read suffices."""
        resource = FakeResource(pending_reads=3)

        result = await quick_engine().reconcile(resource.descriptor(desired=None), quick_options())

        assert resource.count("read") == 2
        assert result.resource["state"] == "pending"


class TestDisposal:
    """Tests for removing resources that are no longer wanted."""

    @pytest.mark.asyncio
    async def test_unwanted_existing_resource_is_disposed(self) -> None:
        """Test that an unwanted resource is disposed."""
        resource = FakeResource(exists=True)

        result = await quick_engine().reconcile(
            resource.descriptor(still_wanted=lambda: False),
            quick_options(),
        )

        assert resource.calls == ["read", "dispose"]
        assert result.action == ReconcileAction.DISPOSED
        assert result.state == ReconcileState.DISPOSED
        assert resource.exists is False

    @pytest.mark.asyncio
    async def test_unwanted_missing_resource_is_left_absent(self) -> None:
        """Test that an unwanted missing resource is neither created nor disposed."""
        resource = FakeResource()

        result = await quick_engine().reconcile(
            resource.descriptor(still_wanted=lambda: False),
            quick_options(),
        )

        assert resource.calls == ["read"]
        assert result.action == ReconcileAction.ABSENT

    @pytest.mark.asyncio
    async def test_wanted_resource_is_never_disposed(self) -> None:
        """Test that dispose only runs when the predicate says so."""
        resource = FakeResource(exists=True)

        await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert resource.count("dispose") == 0

    @pytest.mark.asyncio
    async def test_disposal_failure_is_a_warning(self) -> None:
        """Test that a failed disposal is attempted once and only warns."""
        resource = FakeResource(exists=True)
        resource.dispose_error = client_error("AccessDeniedException", 403, "DeleteThing")

        result = await quick_engine().reconcile(
            resource.descriptor(still_wanted=lambda: False),
            quick_options(),
        )

        assert result.action == ReconcileAction.DISPOSE_FAILED
        assert resource.count("dispose") == 1
        assert len(result.warnings) == 1
        assert "AccessDeniedException" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_unwanted_kind_without_dispose_is_kept(self) -> None:
        """Test that kinds without a dispose callback are left in place."""
        resource = FakeResource(exists=True)

        result = await quick_engine().reconcile(
            resource.descriptor(still_wanted=lambda: False, dispose=None),
            quick_options(),
        )

        assert result.action == ReconcileAction.UNCHANGED
        assert resource.calls == ["read"]


class TestSkippedActions:
    """Tests for adapters declining an operation."""

    @pytest.mark.asyncio
    async def test_skipped_create(self) -> None:
        """Test that a skipped create succeeds without waiting."""
        resource = FakeResource()
        resource.create_errors.append(SkippedAction("no image yet"))

        result = await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert result.action == ReconcileAction.SKIPPED
        assert resource.calls == ["read", "create"]
        assert result.resource == {}

    @pytest.mark.asyncio
    async def test_skipped_update_keeps_existing_fields(self) -> None:
        """Test that a skipped update still returns the current fields."""
        resource = FakeResource(exists=True)
        resource.update_errors.append(SkippedAction("already current"))

        result = await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert result.action == ReconcileAction.SKIPPED
        assert result.state == ReconcileState.READY
        assert result.resource["arn"] == resource.arn

    @pytest.mark.asyncio
    async def test_skipped_read(self) -> None:
        """Test that a skipped read ends reconciliation successfully."""
        resource = FakeResource()
        resource.read_errors.append(SkippedAction("not applicable"))

        result = await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert result.action == ReconcileAction.SKIPPED
        assert resource.count("create") == 0


class TestErrorHandling:
    """Tests for transient and fatal provider errors."""

    @pytest.mark.asyncio
    async def test_transient_create_errors_are_retried(self) -> None:
        """Test that throttling during create is retried within budget."""
        resource = FakeResource()
        resource.create_errors.extend(
            [
                client_error("ThrottlingException", 429, "CreateThing"),
                client_error("ThrottlingException", 429, "CreateThing"),
            ]
        )

        result = await quick_engine().reconcile(resource.descriptor(), quick_options(mutation_retries=2))

        assert result.action == ReconcileAction.CREATED
        assert resource.count("create") == 3

    @pytest.mark.asyncio
    async def test_transient_budget_exhausted_is_fatal(self) -> None:
        """Test that running out of mutation retries raises FatalError."""
        resource = FakeResource()
        resource.create_errors.extend([client_error("ThrottlingException", 429, "CreateThing")] * 3)

        with pytest.raises(FatalError) as exc_info:
            await quick_engine().reconcile(resource.descriptor(), quick_options(mutation_retries=2))

        assert resource.count("create") == 3
        assert "ThrottlingException" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_conflict_during_update_is_retried(self) -> None:
        """Test that a 409 from an update is an in-flight conflict, not a missing resource."""
        resource = FakeResource(exists=True)
        resource.update_errors.append(client_error("ResourceConflictException", 409, "UpdateThing"))

        result = await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert result.action == ReconcileAction.UPDATED
        assert resource.count("update") == 2
        assert resource.count("create") == 0

    @pytest.mark.asyncio
    async def test_conflict_during_read_means_not_found(self) -> None:
        """Test that a 409 from the initial read leads to a create."""
        resource = FakeResource()
        resource.read_errors.append(client_error("ResourceConflictException", 409, "GetThing"))

        result = await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert result.action == ReconcileAction.CREATED

    @pytest.mark.asyncio
    async def test_read_errors_are_fatal(self) -> None:
        """Test that a non-not-found read error aborts without creating."""
        resource = FakeResource()
        resource.read_errors.append(client_error("AccessDeniedException", 403, "GetThing"))

        with pytest.raises(FatalError) as exc_info:
            await quick_engine().reconcile(resource.descriptor(), quick_options())

        assert "read failed" in str(exc_info.value)
        assert resource.count("create") == 0


class TestPermissionMode:
    """Tests for permission collection."""

    @pytest.mark.asyncio
    async def test_no_callbacks_are_invoked(self) -> None:
        """Test that permission mode never reads, creates, updates or disposes."""
        resource = FakeResource(exists=True)
        collector = PermissionCollector()
        reporter = RecordingReporter()

        result = await quick_engine(reporter).reconcile(
            resource.descriptor(still_wanted=lambda: False),
            quick_options(check_permissions=True, collector=collector),
        )

        assert resource.calls == []
        assert result.action == ReconcileAction.PERMISSIONS
        assert result.permissions == ["test:GetThing", "test:CreateThing", "test:UpdateThing"]
        assert "test:CreateThing" in collector
        assert reporter.actions_for(THING_KIND) == [ProgressAction.CHECKING_PERMISSIONS]

    @pytest.mark.asyncio
    async def test_descriptor_without_permissions(self) -> None:
        """Test that a descriptor with no emit_permissions contributes nothing."""
        resource = FakeResource()

        result = await quick_engine().reconcile(
            resource.descriptor(emit_permissions=None),
            quick_options(check_permissions=True),
        )

        assert result.permissions == []
        assert resource.calls == []
