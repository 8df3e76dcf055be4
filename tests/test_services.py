# tests/test_services.py
import pytest
from publish_cache import config, services, segments
from publish_cache.errors import NotFoundError, RebuildInProgressError
from publish_cache.lookups import resolve_segment_for_listing
from publish_cache.models import Address, RebuildJob
from conftest import InlineScheduler


def job_status(db, job_id):
    db.expire_all()
    return db.get(RebuildJob, job_id)


def test_enqueue_runs_rebuild_and_records_job(seeded):
    scheduler = InlineScheduler()
    country, category = services.resolve_segment_names(seeded, "colombia", "PARA LA VENTA")
    job = services.enqueue_segment_rebuild(seeded, scheduler, country, category)
    assert scheduler.submitted == [job.job_id]

    done = job_status(seeded, job.job_id)
    assert done.status == "succeeded"
    assert done.rows_written == 1
    assert (done.country_id, done.category_id) == (1, 5)
    assert done.finished_at is not None


def test_failed_job_records_error(seeded, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("source database unreachable")

    monkeypatch.setattr(services, "rebuild_segment", explode)
    country, category = services.resolve_segment_names(seeded, "Colombia", "para la venta")
    job = services.enqueue_segment_rebuild(seeded, InlineScheduler(), country, category)
    done = job_status(seeded, job.job_id)
    assert done.status == "failed"
    assert done.error == "source database unreachable"


def test_enqueue_refused_while_segment_is_claimed(seeded):
    segments.ensure_segment(seeded, 1, 5, "Colombia", "para la venta")
    segments.mark_rebuild_started(seeded, 1, 5)
    country, category = services.resolve_segment_names(seeded, "Colombia", "para la venta")
    scheduler = InlineScheduler()
    with pytest.raises(RebuildInProgressError):
        services.enqueue_segment_rebuild(seeded, scheduler, country, category)
    assert scheduler.submitted == []
    assert seeded.query(RebuildJob).count() == 0


def test_job_skipped_when_claim_is_taken_before_it_runs(seeded):
    job = services.create_job(seeded, "segment", 1, 5)
    segments.ensure_segment(seeded, 1, 5, "Colombia", "para la venta")
    segments.mark_rebuild_started(seeded, 1, 5)
    services.run_segment_job(job.job_id, 1, 5, "Colombia", "para la venta")
    done = job_status(seeded, job.job_id)
    assert done.status == "skipped"
    assert "already in progress" in done.error


def test_known_segments_merge_metadata_and_configuration(seeded, monkeypatch):
    segments.ensure_segment(seeded, 2, 5, "Peru", "para la venta")
    monkeypatch.setattr(services, "configured_segments", lambda: [("Colombia", "para la venta"), ("Atlantis", "x")])
    known = sorted(services.known_segments(seeded))
    assert known == [(1, 5, "Colombia", "para la venta"), (2, 5, "Peru", "para la venta")]


def test_configured_segments_follow_runtime_setting(seeded, monkeypatch):
    monkeypatch.setattr(config, "PUBLISH_SEGMENTS", "Peru:para la venta; Chile : servicios ;broken")
    assert config.configured_segments() == [("Peru", "para la venta"), ("Chile", "servicios")]
    known = sorted(services.known_segments(seeded))
    assert known == [(2, 5, "Peru", "para la venta"), (3, 6, "Chile", "servicios")]


def test_rebuild_all_continues_past_failures(seeded, monkeypatch):
    segments.ensure_segment(seeded, 2, 5, "Peru", "para la venta")
    segments.ensure_segment(seeded, 1, 6, "Colombia", "servicios")
    real = services.rebuild_segment

    def flaky(db, country_id, category_id, country_name, category_name):
        if category_id == 6:
            raise RuntimeError("insert failed")
        return real(db, country_id, category_id, country_name, category_name)

    monkeypatch.setattr(services, "rebuild_segment", flaky)
    summary = services.rebuild_all_known_segments(seeded)
    assert summary == {"segments": 3, "succeeded": 2, "failed": 1, "skipped": 0, "rows": 2}


def test_rebuild_all_job(seeded):
    job = services.enqueue_rebuild_all(seeded, InlineScheduler())
    done = job_status(seeded, job.job_id)
    assert done.kind == "all"
    assert done.status == "succeeded"
    assert done.rows_written == 1


def test_listing_resolves_to_its_segment(seeded):
    country, category = resolve_segment_for_listing(seeded, "L1")
    assert (country.country_name, category.category_name) == ("Colombia", "para la venta")
    job, country, category = services.enqueue_listing_rebuild(seeded, InlineScheduler(), "L2")
    assert country.country_name == "Peru"
    assert job_status(seeded, job.job_id).rows_written == 1


def test_unknown_listing(seeded):
    with pytest.raises(NotFoundError):
        resolve_segment_for_listing(seeded, "missing")


def test_listing_without_address(seeded):
    seeded.query(Address).filter(Address.listing_id == "L1").delete()
    seeded.commit()
    with pytest.raises(NotFoundError) as exc:
        resolve_segment_for_listing(seeded, "L1")
    assert exc.value.message == "Listing address not found"
