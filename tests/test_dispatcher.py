import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update

from conftest import add_printer, make_order, queue_order
from shared.config.database import AsyncSessionLocal
from shared.errors import PrintJobNotFound, TransitionConflict, TransitionRejected
from shared.utils.clock import utcnow
from services.order_service.repository import OrderRepository
from services.print_service.delivery import PrintDeliveryClient
from services.print_service.dispatcher import PrintQueueDispatcher
from services.print_service.models import PrintJob
from services.print_service.repository import PrinterRepository, PrintJobRepository

pytestmark = pytest.mark.usefixtures("database")


async def _job(job_id):
    async with AsyncSessionLocal() as db:
        return await PrintJobRepository.get(db, job_id)


async def _order(order_id):
    async with AsyncSessionLocal() as db:
        return await OrderRepository.get_order(db, order_id)


async def _printer(printer_id):
    async with AsyncSessionLocal() as db:
        return await PrinterRepository.get(db, printer_id)


async def _set_job(job_id, **values):
    async with AsyncSessionLocal() as db:
        await db.execute(update(PrintJob).where(PrintJob.id == job_id).values(**values))
        await db.commit()


async def test_claim_moves_printer_job_and_order_together(dispatcher):
    job = await queue_order("ORD-1")
    printer = await add_printer()

    result = await dispatcher.process_queue_once()

    assert result.assigned == 1
    job = await _job(job.id)
    order = await _order("ORD-1")
    printer = await _printer(printer.id)
    assert job.status == "printing"
    assert job.printer_id == printer.id
    assert job.worker_id == "worker-a"
    assert job.started_at is not None and job.heartbeat_at is not None
    assert printer.status == "busy"
    assert printer.current_job_id == job.id
    assert order.print_status == "printing"
    assert order.status == "printing"
    assert order.order_status == "printing"
    assert order.printing_by == "worker-a"
    assert order.print_job_id == str(job.id)


async def test_highest_priority_then_oldest_first(dispatcher):
    older = await queue_order("ORD-OLD")
    urgent = await queue_order("ORD-URGENT", printing_options={"priority": "urgent", "page_count": 1})
    newer = await queue_order("ORD-NEW")
    await add_printer()

    await dispatcher.process_queue_once()
    assert (await _job(urgent.id)).status == "printing"
    assert (await _job(older.id)).status == "pending"

    await add_printer("printer-2")
    await dispatcher.process_queue_once()
    assert (await _job(older.id)).status == "printing"
    assert (await _job(newer.id)).status == "pending"


async def test_job_without_capable_printer_stays_pending(dispatcher):
    job = await queue_order("ORD-1", printing_options={"color": "color", "page_count": 2})
    await add_printer(capabilities={"supports_color": False})

    result = await dispatcher.process_queue_once()

    assert result.assigned == 0
    assert result.skipped == 1
    assert (await _job(job.id)).status == "pending"


async def test_offline_printers_get_nothing(dispatcher):
    job = await queue_order("ORD-1")
    await add_printer(status="offline")

    await dispatcher.process_queue_once()
    assert (await _job(job.id)).status == "pending"


async def test_concurrent_dispatchers_never_double_claim(notifier):
    jobs = [await queue_order(f"ORD-{i}") for i in range(3)]
    printers = [await add_printer(f"printer-{i}") for i in range(2)]
    dispatchers = [
        PrintQueueDispatcher(worker_id=f"worker-{i}", notifier=notifier,
                             delivery=PrintDeliveryClient(base_url=""))
        for i in range(3)
    ]

    results = await asyncio.gather(*(d.process_queue_once() for d in dispatchers))
    # A pair lost to lock contention is picked up by a later tick
    await dispatchers[0].process_queue_once()

    printing = [j for j in [await _job(j.id) for j in jobs] if j.status == "printing"]
    assert len(printing) == 2
    assert sum(r.assigned for r in results) <= 2
    assert len({j.printer_id for j in printing}) == 2
    for job in printing:
        printer = await _printer(job.printer_id)
        assert printer.status == "busy"
        assert printer.current_job_id == job.id
        assert (await _order(job.order_id)).print_job_id == str(job.id)
    assert {p.id for p in printers} == {j.printer_id for j in printing}


async def test_two_ticks_race_for_one_job(notifier):
    job = await queue_order("ORD-1")
    printer = await add_printer()
    dispatchers = [
        PrintQueueDispatcher(worker_id=f"worker-{i}", notifier=notifier,
                             delivery=PrintDeliveryClient(base_url=""))
        for i in range(2)
    ]

    results = await asyncio.gather(*(d.process_queue_once() for d in dispatchers))

    assert sum(r.assigned for r in results) == 1
    job = await _job(job.id)
    assert job.status == "printing"
    assert job.printer_id == printer.id
    printer = await _printer(printer.id)
    assert printer.status == "busy"
    assert printer.current_job_id == job.id
    assert (await _order("ORD-1")).printing_by == job.worker_id


async def test_unpaid_order_job_is_failed_not_printed(dispatcher):
    await make_order("ORD-1", paid=False, print_status="pending")
    async with AsyncSessionLocal() as db:
        job = PrintJob(order_id="ORD-1", printing_options={}, status="pending")
        db.add(job)
        await db.commit()
        await db.refresh(job)
    printer = await add_printer()

    result = await dispatcher.process_queue_once()

    assert result.failed == 1
    assert result.assigned == 0
    job = await _job(job.id)
    assert job.status == "failed"
    assert "unpaid" in job.error_message
    assert (await _printer(printer.id)).status == "idle"
    assert (await _order("ORD-1")).print_status == "pending"


async def test_fresh_heartbeat_is_not_stale(dispatcher):
    await queue_order("ORD-1")
    await add_printer()
    await dispatcher.process_queue_once()

    assert await dispatcher.recover_stale_jobs() == 0


async def test_stale_job_is_requeued_and_printer_released(dispatcher):
    job = await queue_order("ORD-1")
    printer = await add_printer()
    await dispatcher.process_queue_once()
    await _set_job(job.id, heartbeat_at=utcnow() - timedelta(minutes=5))

    assert await dispatcher.recover_stale_jobs() == 1

    job = await _job(job.id)
    order = await _order("ORD-1")
    assert job.status == "pending"
    assert job.retry_count == 1
    assert job.worker_id is None
    assert "heartbeat not updated for 5 minutes" in job.error_message
    assert (await _printer(printer.id)).status == "idle"
    assert order.print_status == "pending"
    assert order.printing_by is None

    async with AsyncSessionLocal() as db:
        logs = await OrderRepository.list_logs(db, "ORD-1")
    recovered = [log for log in logs if log.action == "stale_print_recovered"]
    assert len(recovered) == 1
    assert recovered[0].details["printing_by"] == "worker-a"


async def test_stale_job_out_of_retries_fails(dispatcher, notifier):
    job = await queue_order("ORD-1")
    await add_printer()
    await _set_job(job.id, max_retries=1)
    await dispatcher.process_queue_once()
    await _set_job(job.id, heartbeat_at=None, started_at=utcnow() - timedelta(minutes=5))

    await dispatcher.recover_stale_jobs()

    job = await _job(job.id)
    order = await _order("ORD-1")
    assert job.status == "failed"
    assert "Max print attempts (1) reached" in job.error_message
    assert order.print_status == "failed"
    assert order.order_status == "failed"
    assert notifier.kinds("ORD-1") == ["print_failed"]


async def test_completion_releases_printer_and_marks_order_printed(dispatcher):
    job = await queue_order("ORD-1")
    printer = await add_printer()
    await dispatcher.process_queue_once()

    done = await dispatcher.report_completed(job.id, "worker-a")

    assert done.status == "completed"
    assert done.actual_duration == 0
    printer = await _printer(printer.id)
    assert printer.status == "idle"
    assert printer.current_job_id is None
    assert printer.total_jobs_printed == 1
    order = await _order("ORD-1")
    assert order.print_status == "printed"
    assert order.print_completed_at is not None
    assert order.status == "printing"

    # Repeated reports are harmless
    again = await dispatcher.report_completed(job.id, "worker-a")
    assert again.status == "completed"
    assert (await _printer(printer.id)).total_jobs_printed == 1


async def test_report_from_another_worker_conflicts(dispatcher):
    job = await queue_order("ORD-1")
    await add_printer()
    await dispatcher.process_queue_once()

    with pytest.raises(TransitionConflict):
        await dispatcher.report_completed(job.id, "worker-b")
    assert await dispatcher.record_heartbeat(job.id, "worker-b") is False
    assert await dispatcher.record_heartbeat(job.id, "worker-a") is True


async def test_reports_from_an_earlier_claim_are_refused(dispatcher):
    job = await queue_order("ORD-1")
    first = await add_printer("printer-1")
    await dispatcher.process_queue_once()
    old_token = (await _job(job.id)).claim_token
    assert old_token

    # The worker stalls, the job is recovered and the same dispatcher hands it out again
    await _set_job(job.id, heartbeat_at=utcnow() - timedelta(minutes=5))
    assert await dispatcher.recover_stale_jobs() == 1
    await dispatcher.printer_offline(first.id)
    second = await add_printer("printer-2")
    assert (await dispatcher.process_queue_once()).assigned == 1

    reclaimed = await _job(job.id)
    assert reclaimed.printer_id == second.id
    assert reclaimed.worker_id == "worker-a"
    assert reclaimed.claim_token not in (None, old_token)

    assert await dispatcher.record_heartbeat(job.id, "worker-a", old_token) is False
    with pytest.raises(TransitionConflict):
        await dispatcher.report_completed(job.id, "worker-a", old_token)
    with pytest.raises(TransitionConflict):
        await dispatcher.report_failed(job.id, "Paper jam", "worker-a", old_token)

    job = await _job(job.id)
    assert job.status == "printing"
    assert job.retry_count == 1
    assert job.printer_id == second.id
    printer = await _printer(second.id)
    assert printer.status == "busy"
    assert printer.current_job_id == job.id
    assert (await _order("ORD-1")).print_status == "printing"

    assert await dispatcher.record_heartbeat(job.id, "worker-a", reclaimed.claim_token) is True
    done = await dispatcher.report_completed(job.id, "worker-a", reclaimed.claim_token)
    assert done.status == "completed"
    assert (await _printer(second.id)).status == "idle"
    with pytest.raises(TransitionConflict):
        await dispatcher.report_completed(job.id, "worker-a", old_token)


async def test_failure_requeues_until_max_retries(dispatcher, notifier):
    job = await queue_order("ORD-1")
    await add_printer()
    await _set_job(job.id, max_retries=2)

    await dispatcher.process_queue_once()
    first = await dispatcher.report_failed(job.id, "Paper jam", "worker-a")
    assert first.status == "pending"
    assert first.retry_count == 1
    assert (await _order("ORD-1")).print_status == "pending"

    await dispatcher.process_queue_once()
    second = await dispatcher.report_failed(job.id, "Paper jam", "worker-a")
    assert second.status == "failed"
    assert second.retry_count == 2
    order = await _order("ORD-1")
    assert order.print_status == "failed"
    assert "Paper jam" in order.print_error
    assert notifier.kinds("ORD-1") == ["print_failed"]

    with pytest.raises(TransitionRejected):
        await dispatcher.report_failed(job.id, "again", "worker-a")


async def test_unknown_job_reports(dispatcher):
    with pytest.raises(PrintJobNotFound):
        await dispatcher.report_completed(999)


async def test_printer_presence(stub_dispatcher):
    printer = await add_printer(status="offline")
    assert (await stub_dispatcher.printer_online(printer.id)).status == "idle"
    assert stub_dispatcher.triggered == 1

    job = await queue_order("ORD-1")
    await stub_dispatcher.process_queue_once()
    with pytest.raises(TransitionRejected, match="busy"):
        await stub_dispatcher.printer_offline(printer.id)

    await stub_dispatcher.report_completed(job.id, "worker-stub")
    assert (await stub_dispatcher.printer_offline(printer.id)).status == "offline"


async def test_status_reports_counts(dispatcher):
    await queue_order("ORD-1")
    await queue_order("ORD-2")
    await add_printer()
    await dispatcher.process_queue_once()

    status = await dispatcher.get_status()
    assert status["running"] is False
    assert status["jobs"]["printing"] == 1
    assert status["jobs"]["pending"] == 1
    assert status["printers"]["busy"] == 1
    assert status["last_tick"]["assigned"] == 1
