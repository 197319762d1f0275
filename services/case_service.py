"""Case Service — Case registration, following and on-demand sync."""
from __future__ import annotations

import structlog

from database.store_base import BaseStore
from job_queue.payloads import CaseSyncPayload
from job_queue.producer import JobProducer
from models.schemas import Case, CaseFollow
from services.errors import ConflictError, NotFoundError

logger = structlog.get_logger()


class CaseService:

    def __init__(self, store: BaseStore, producer: JobProducer):
        self.store = store
        self.producer = producer

    async def create_case(self, case: Case) -> Case:
        if await self.store.get_case_by_number(case.case_number):
            raise ConflictError("Case with this number already exists")
        created = await self.store.upsert_case(case)
        logger.info("case_created", case_id=case.id, case_number=case.case_number)
        return created

    async def follow_case(self, user_id: str, case_id: str) -> CaseFollow:
        if await self.store.get_case(case_id) is None:
            raise NotFoundError("Case not found")
        if await self.store.is_following(user_id, case_id):
            raise ConflictError("Already following this case")
        follow = await self.store.follow_case(user_id, case_id)
        logger.info("case_followed", user_id=user_id, case_id=case_id)
        return follow

    async def request_sync(self, case_id: str) -> str:
        case = await self.store.get_case(case_id)
        if case is None:
            raise NotFoundError("Case not found")
        return await self.producer.schedule_case_sync(
            CaseSyncPayload(case_id=case.id, last_sync_at=case.last_synced_at),
        )

    async def request_sync_all(self) -> dict:
        """Queue one batch sync covering every followed case."""
        case_ids = await self.store.list_followed_case_ids()
        if not case_ids:
            return {"case_count": 0, "job_id": None}
        job_id = await self.producer.schedule_batch_case_sync(case_ids)
        logger.info("case_sync_requested", case_count=len(case_ids), job_id=job_id)
        return {"case_count": len(case_ids), "job_id": job_id}
