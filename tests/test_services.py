"""Tests for the SOS, report and case services."""
from datetime import timedelta

import pytest

from conftest import NOW
from job_queue.message_queue import JobState
from job_queue.payloads import JobKind, Queues
from models.schemas import Case, Location, ReportStatus, SosPriority, SosStatus
from services.case_service import CaseService
from services.errors import ConflictError, NotFoundError, ValidationError
from services.report_service import ReportService, validate_report
from services.sos_service import SosService, validate_location

DESCRIPTION = ("The tehsildar's assistant asked for five thousand rupees before he would "
               "sign the mutation papers for my father's plot.")
DADAR = Location(lat=19.0178, lng=72.8478, address="Dadar West, Mumbai")


@pytest.fixture
def sos_service(store, producer) -> SosService:
    return SosService(store, producer)


@pytest.fixture
def report_service(store, producer) -> ReportService:
    return ReportService(store, producer)


@pytest.fixture
def case_service(store, producer) -> CaseService:
    return CaseService(store, producer)


class TestLocationValidation:
    @pytest.mark.parametrize("location", [
        Location(lat=19.0, lng=72.8, address="   "),
        Location(lat=91.0, lng=72.8, address="Somewhere"),
        Location(lat=19.0, lng=-181.0, address="Somewhere"),
    ])
    def test_invalid(self, location):
        with pytest.raises(ValidationError):
            validate_location(location)

    def test_valid(self):
        validate_location(DADAR)


class TestSosService:
    @pytest.mark.asyncio
    async def test_create_stores_pending_and_enqueues_dispatch(self, sos_service, store, queue, citizen):
        await store.upsert_user(citizen)

        incident = await sos_service.create_incident("u_citizen", DADAR, "Chain snatching, suspect fleeing",
                                                     SosPriority.CRITICAL)

        assert incident.status == SosStatus.PENDING
        assert (await store.get_sos_incident(incident.id)).status == SosStatus.PENDING
        jobs = await queue.get_jobs(Queues.SOS_DISPATCH, JobState.WAITING)
        assert len(jobs) == 1
        assert jobs[0].priority == 1
        assert jobs[0].payload["incident_id"] == incident.id
        assert jobs[0].payload["user_contact"]["phone"] == "+919812345678"

    @pytest.mark.asyncio
    async def test_unknown_user(self, sos_service):
        with pytest.raises(NotFoundError):
            await sos_service.create_incident("ghost", DADAR, "help")

    @pytest.mark.asyncio
    async def test_bad_location_enqueues_nothing(self, sos_service, store, queue, citizen):
        await store.upsert_user(citizen)
        with pytest.raises(ValidationError):
            await sos_service.create_incident("u_citizen", Location(lat=0, lng=0, address=""), "help")
        assert (await queue.get_counts(Queues.SOS_DISPATCH))["waiting"] == 0

    @pytest.mark.asyncio
    async def test_status_update_notifies_owner(self, sos_service, store, queue, citizen):
        await store.upsert_user(citizen)
        incident = await sos_service.create_incident("u_citizen", DADAR, "Road accident")

        updated = await sos_service.update_status(incident.id, SosStatus.IN_PROGRESS, updated_by="mod_a")

        assert updated.status == SosStatus.IN_PROGRESS
        [note] = await queue.get_jobs(Queues.NOTIFICATIONS, JobState.WAITING)
        assert note.payload["template"] == "sos-status-update"
        assert note.payload["data"] == {"incidentId": incident.id, "status": "IN_PROGRESS",
                                        "userName": "Asha Verma"}

    @pytest.mark.asyncio
    async def test_status_cannot_move_backwards(self, sos_service, store, queue, citizen):
        await store.upsert_user(citizen)
        incident = await sos_service.create_incident("u_citizen", DADAR, "Road accident")
        await sos_service.update_status(incident.id, SosStatus.RESOLVED)

        with pytest.raises(ValidationError):
            await sos_service.update_status(incident.id, SosStatus.IN_PROGRESS)
        assert (await queue.get_counts(Queues.NOTIFICATIONS))["waiting"] == 1

    @pytest.mark.asyncio
    async def test_get_missing_incident(self, sos_service):
        with pytest.raises(NotFoundError):
            await sos_service.get_incident("sos_none")


class TestReportValidation:
    def test_short_title(self):
        with pytest.raises(ValidationError, match="Title"):
            validate_report("Bribe", DESCRIPTION, None)

    def test_short_description(self):
        with pytest.raises(ValidationError, match="Description"):
            validate_report("Bribe at tehsil office", "Asked for money.", None)

    def test_future_incident_date(self):
        with pytest.raises(ValidationError, match="future"):
            validate_report("Bribe at tehsil office", DESCRIPTION, NOW + timedelta(days=1), now=NOW)

    def test_naive_past_date_accepted(self):
        validate_report("Bribe at tehsil office", DESCRIPTION, (NOW - timedelta(days=3)).replace(tzinfo=None),
                        now=NOW)


class TestReportService:
    @pytest.mark.asyncio
    async def test_create_enqueues_delayed_triage(self, report_service, store, queue):
        report = await report_service.create_report("u_citizen", "Bribe at tehsil office", DESCRIPTION,
                                                    "Revenue")

        assert (await store.get_report(report.id)).status == ReportStatus.SUBMITTED
        [job] = await queue.get_jobs(Queues.REPORT_TRIAGE, JobState.DELAYED)
        assert job.kind == JobKind.TRIAGE_REPORT.value
        assert job.payload["report_id"] == report.id
        assert job.max_attempts == 2

    @pytest.mark.asyncio
    async def test_update_notifies_reporter(self, report_service, store, queue, citizen):
        await store.upsert_user(citizen)
        report = await report_service.create_report("u_citizen", "Bribe at tehsil office", DESCRIPTION,
                                                    "Revenue")

        await report_service.update_status(report.id, ReportStatus.ACTION_TAKEN, resolution="Clerk suspended")

        [note] = await queue.get_jobs(Queues.NOTIFICATIONS, JobState.WAITING)
        assert note.payload["template"] == "report-status-update"
        assert note.payload["data"]["resolution"] == "Clerk suspended"
        stored = await store.get_report(report.id)
        assert stored.status == ReportStatus.ACTION_TAKEN
        assert stored.resolution == "Clerk suspended"

    @pytest.mark.asyncio
    async def test_anonymous_reporter_not_notified(self, report_service, queue):
        report = await report_service.create_report("u_citizen", "Bribe at tehsil office", DESCRIPTION,
                                                    "Revenue", is_anonymous=True)
        await report_service.update_status(report.id, ReportStatus.UNDER_REVIEW)
        assert (await queue.get_counts(Queues.NOTIFICATIONS))["waiting"] == 0

    @pytest.mark.asyncio
    async def test_backward_move_rejected(self, report_service, store):
        report = await report_service.create_report("u_citizen", "Bribe at tehsil office", DESCRIPTION,
                                                    "Revenue")
        await report_service.update_status(report.id, ReportStatus.INVESTIGATING)
        with pytest.raises(ValidationError):
            await report_service.update_status(report.id, ReportStatus.UNDER_REVIEW)

    @pytest.mark.asyncio
    async def test_dismiss_from_any_open_status(self, report_service):
        report = await report_service.create_report("u_citizen", "Bribe at tehsil office", DESCRIPTION,
                                                    "Revenue")
        await report_service.update_status(report.id, ReportStatus.INVESTIGATING)
        dismissed = await report_service.update_status(report.id, ReportStatus.DISMISSED)
        assert dismissed.status == ReportStatus.DISMISSED

    @pytest.mark.asyncio
    async def test_missing_report(self, report_service):
        with pytest.raises(NotFoundError):
            await report_service.update_status("rep_none", ReportStatus.CLOSED)


class TestCaseService:
    @pytest.mark.asyncio
    async def test_duplicate_case_number(self, case_service):
        await case_service.create_case(Case(case_number="CRL-2024-1187", title="State vs. Malhotra"))
        with pytest.raises(ConflictError):
            await case_service.create_case(Case(case_number="CRL-2024-1187", title="Another title"))

    @pytest.mark.asyncio
    async def test_follow_once(self, case_service):
        case = await case_service.create_case(Case(case_number="CRL-2024-1187", title="State vs. Malhotra"))
        await case_service.follow_case("u_citizen", case.id)
        with pytest.raises(ConflictError):
            await case_service.follow_case("u_citizen", case.id)

    @pytest.mark.asyncio
    async def test_follow_unknown_case(self, case_service):
        with pytest.raises(NotFoundError):
            await case_service.follow_case("u_citizen", "case_none")

    @pytest.mark.asyncio
    async def test_request_sync(self, case_service, queue):
        case = await case_service.create_case(Case(case_number="CRL-2024-1187", title="State vs. Malhotra"))
        job_id = await case_service.request_sync(case.id)
        job = await queue.get_job(job_id)
        assert job.kind == JobKind.SYNC_CASE.value
        assert job.payload["case_id"] == case.id

    @pytest.mark.asyncio
    async def test_request_sync_all(self, case_service, queue):
        assert await case_service.request_sync_all() == {"case_count": 0, "job_id": None}

        case = await case_service.create_case(Case(case_number="CRL-2024-1187", title="State vs. Malhotra"))
        await case_service.follow_case("u_citizen", case.id)
        result = await case_service.request_sync_all()

        assert result["case_count"] == 1
        batch = await queue.get_job(result["job_id"])
        assert batch.payload["case_ids"] == [case.id]
