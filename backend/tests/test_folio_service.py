"""
Tests for the folio sequencer: format, per-key counters, retry policy and
gap-free allocation under concurrent callers.
"""

import threading
from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from repairdesk.exceptions import NotFound, SequenceGenerationFailed
from repairdesk.extensions import db
from repairdesk.models import FolioSequence
from repairdesk.services import folio_service


JAN_2025 = datetime(2025, 1, 15, 12, 0)


def test_first_and_second_folio_in_period(db_session, org, branch):
    first = folio_service.next_folio('VTA', branch.id, org_id=org.id, at=JAN_2025)
    second = folio_service.next_folio('VTA', branch.id, org_id=org.id, at=JAN_2025)

    assert first == 'VTA-MTY-202501-0001'
    assert second == 'VTA-MTY-202501-0002'


def test_counters_are_independent_per_prefix_branch_and_period(db_session, org, branch, second_branch):
    assert folio_service.next_folio('VTA', branch.id, org_id=org.id, at=JAN_2025).endswith('-0001')
    assert folio_service.next_folio('LAB', branch.id, org_id=org.id, at=JAN_2025) == 'LAB-MTY-202501-0001'
    assert folio_service.next_folio('VTA', second_branch.id, org_id=org.id, at=JAN_2025) == 'VTA-GDL-202501-0001'
    assert folio_service.next_folio('VTA', branch.id, org_id=org.id, at=datetime(2025, 2, 1)) == 'VTA-MTY-202502-0001'

    rows = db_session.query(FolioSequence).count()
    assert rows == 4


def test_preview_does_not_consume(db_session, org, branch):
    assert folio_service.preview_folio('LAB', branch.id, org_id=org.id, at=JAN_2025) == 'LAB-MTY-202501-0001'
    assert folio_service.preview_folio('LAB', branch.id, org_id=org.id, at=JAN_2025) == 'LAB-MTY-202501-0001'

    folio_service.next_folio('LAB', branch.id, org_id=org.id, at=JAN_2025)
    assert folio_service.preview_folio('LAB', branch.id, org_id=org.id, at=JAN_2025) == 'LAB-MTY-202501-0002'


def test_branch_of_another_org_is_not_found(db_session, org, other_org):
    _, foreign_branch = other_org

    with pytest.raises(NotFound):
        folio_service.next_folio('VTA', foreign_branch.id, org_id=org.id)

    assert db_session.query(FolioSequence).count() == 0


def test_transient_errors_are_retried(db_session, org, branch, monkeypatch):
    real_increment = folio_service._increment_sequence
    calls = {'n': 0}

    def flaky(prefix, branch_id, period):
        calls['n'] += 1
        if calls['n'] < 3:
            raise OperationalError('UPDATE folio_sequences', {}, Exception('database is locked'))
        return real_increment(prefix, branch_id, period)

    monkeypatch.setattr(folio_service, '_increment_sequence', flaky)

    folio = folio_service.next_folio('VTA', branch.id, org_id=org.id, at=JAN_2025)

    assert folio == 'VTA-MTY-202501-0001'
    assert calls['n'] == 3


def test_exhausted_retries_raise_sequence_generation_failed(db_session, org, branch, app, monkeypatch):
    def always_conflicts(prefix, branch_id, period):
        raise IntegrityError('INSERT INTO folio_sequences', {}, Exception('UNIQUE constraint failed'))

    monkeypatch.setattr(folio_service, '_increment_sequence', always_conflicts)
    monkeypatch.setitem(app.config, 'FOLIO_MAX_ATTEMPTS', 3)

    with pytest.raises(SequenceGenerationFailed) as exc_info:
        folio_service.next_folio('VTA', branch.id, org_id=org.id, at=JAN_2025)

    assert exc_info.value.details['attempts'] == 3
    assert exc_info.value.code == 'SEQUENCE_GENERATION_FAILED'


def test_concurrent_callers_get_contiguous_unique_folios(file_app, file_tenant):
    created = []
    errors = []
    lock = threading.Lock()

    def worker():
        with file_app.app_context():
            try:
                folio = folio_service.next_folio(
                    'VTA', file_tenant['branch_id'], org_id=file_tenant['org_id'], at=JAN_2025,
                )
                with lock:
                    created.append(folio)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    assert sorted(created) == [f'VTA-MTY-202501-{n:04d}' for n in range(1, 11)]
