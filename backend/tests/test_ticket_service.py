"""
Tests for the repair ticket workflow: transition table, history, payment gate
and the part side effects of IN_REPAIR / CANCELLED.
"""

import threading

import pytest

from repairdesk.exceptions import (
    ConcurrencyConflict,
    InvalidTransition,
    NotFound,
    PaymentIncomplete,
    ValidationFailed,
)
from repairdesk.extensions import db
from repairdesk.models import Movement, PartState, StockLevel, Ticket, TicketHistory, TicketPart, TicketState
from repairdesk.services import reservation_service, sales_service, ticket_service


def open_ticket(org, branch, **extra):
    return ticket_service.create_ticket(
        org_id=org.id,
        branch_id=branch.id,
        actor_user_id=1,
        customer_name='Luis Garza',
        customer_phone='8110000000',
        device='Galaxy S21',
        brand='Samsung',
        problem='Does not charge',
        **extra,
    )


def walk(ticket_id, org, *states, **fields):
    for state in states:
        ticket_service.transition(ticket_id, state, org_id=org.id, **fields)


def test_create_ticket(db_session, org, branch):
    ticket = open_ticket(org, branch, estimated_cost_cents=80000)

    assert ticket.state == TicketState.RECEIVED.value
    assert ticket.folio.startswith('LAB-MTY-')
    assert ticket.folio.endswith('-0001')
    assert ticket.advance_payment_cents == 0
    assert [(h.from_state, h.to_state) for h in ticket.history] == [(None, 'RECEIVED')]


def test_create_ticket_requires_fields(db_session, org, branch):
    with pytest.raises(ValidationFailed) as exc_info:
        ticket_service.create_ticket(org_id=org.id, branch_id=branch.id, customer_name='X')
    assert set(exc_info.value.details['fields']) == {'device', 'problem'}

    with pytest.raises(ValidationFailed):
        open_ticket(org, branch, state='DELIVERED')

    with pytest.raises(ValidationFailed):
        open_ticket(org, branch, estimated_cost_cents=-1)


def test_happy_path_records_history(db_session, org, branch):
    ticket = open_ticket(org, branch)

    walk(ticket.id, org, 'DIAGNOSING', 'AWAITING_PART', 'IN_REPAIR', 'REPAIRED', 'DELIVERED')

    ticket = ticket_service.get_ticket(ticket.id, org_id=org.id)
    assert ticket.state == 'DELIVERED'
    assert ticket_service.is_terminal(ticket.state)
    history = db_session.query(TicketHistory).filter_by(ticket_id=ticket.id).order_by(TicketHistory.id).all()
    assert [h.to_state for h in history] == [
        'RECEIVED', 'DIAGNOSING', 'AWAITING_PART', 'IN_REPAIR', 'REPAIRED', 'DELIVERED',
    ]


@pytest.mark.parametrize('path, bad_target', [
    ((), 'REPAIRED'),
    ((), 'DELIVERED'),
    (('DIAGNOSING',), 'RECEIVED'),
    (('DIAGNOSING', 'IN_REPAIR', 'REPAIRED'), 'CANCELLED'),
    (('CANCELLED',), 'DIAGNOSING'),
])
def test_transitions_outside_table_are_rejected(db_session, org, branch, path, bad_target):
    ticket = open_ticket(org, branch)
    walk(ticket.id, org, *path)
    state_before = ticket_service.get_ticket(ticket.id, org_id=org.id).state
    history_before = db_session.query(TicketHistory).filter_by(ticket_id=ticket.id).count()

    with pytest.raises(InvalidTransition):
        ticket_service.transition(ticket.id, bad_target, org_id=org.id)

    assert ticket_service.get_ticket(ticket.id, org_id=org.id).state == state_before
    assert db_session.query(TicketHistory).filter_by(ticket_id=ticket.id).count() == history_before


def test_transition_table_terminal_states():
    assert ticket_service.TICKET_TRANSITIONS[TicketState.DELIVERED] == frozenset()
    assert ticket_service.TICKET_TRANSITIONS[TicketState.CANCELLED] == frozenset()
    for state in TicketState:
        if state not in (TicketState.REPAIRED, TicketState.DELIVERED, TicketState.CANCELLED):
            assert TicketState.CANCELLED in ticket_service.TICKET_TRANSITIONS[state]


def test_unknown_state_is_validation_error(db_session, org, branch):
    ticket = open_ticket(org, branch)
    with pytest.raises(ValidationFailed):
        ticket_service.transition(ticket.id, 'LOST', org_id=org.id)


def test_delivery_requires_full_payment(db_session, org, branch):
    ticket = open_ticket(org, branch, advance_payment_cents=30000)
    walk(ticket.id, org, 'DIAGNOSING', 'IN_REPAIR')
    ticket_service.transition(ticket.id, 'REPAIRED', org_id=org.id, final_cost_cents=100000)

    with pytest.raises(PaymentIncomplete) as exc_info:
        ticket_service.transition(ticket.id, 'DELIVERED', org_id=org.id)
    assert exc_info.value.details['total_owed_cents'] == 100000
    assert exc_info.value.details['total_paid_cents'] == 30000
    assert ticket_service.get_ticket(ticket.id, org_id=org.id).state == 'REPAIRED'

    sales_service.create_sale(
        org_id=org.id,
        branch_id=branch.id,
        ticket_id=ticket.id,
        lines=[{'description': 'Charging port replacement', 'qty': 1, 'unit_price_cents': 70000}],
        payment={'amount_cents': 70000, 'method': 'CARD'},
    )

    delivered = ticket_service.transition(ticket.id, 'DELIVERED', org_id=org.id)
    assert delivered.state == 'DELIVERED'


def test_pending_sale_payments_do_not_count(db_session, org, branch):
    ticket = open_ticket(org, branch)
    walk(ticket.id, org, 'DIAGNOSING', 'IN_REPAIR')
    ticket_service.transition(ticket.id, 'REPAIRED', org_id=org.id, final_cost_cents=50000)

    sales_service.create_sale(
        org_id=org.id,
        branch_id=branch.id,
        ticket_id=ticket.id,
        lines=[{'description': 'Repair', 'qty': 1, 'unit_price_cents': 50000}],
        payment={'amount_cents': 20000, 'method': 'CARD'},
    )

    with pytest.raises(PaymentIncomplete):
        ticket_service.transition(ticket.id, 'DELIVERED', org_id=org.id)


def test_in_repair_consumes_reserved_parts(db_session, org, branch, stocked_variant, stock_of):
    ticket = open_ticket(org, branch)
    part = ticket_service.add_part(ticket.id, stocked_variant.id, 2, org_id=org.id)
    assert stock_of(branch.id, stocked_variant.id) == (10, 2)

    walk(ticket.id, org, 'DIAGNOSING', 'IN_REPAIR')

    assert db_session.get(TicketPart, part.id).state == PartState.CONSUMED.value
    assert stock_of(branch.id, stocked_variant.id) == (8, 0)
    assert db_session.query(Movement).filter_by(ticket_id=ticket.id, type='OUT').count() == 1
    assert ticket_service.reserved_parts(ticket.id, org_id=org.id) == []


def test_cancel_releases_reserved_parts(db_session, org, branch, stocked_variant, stock_of):
    ticket = open_ticket(org, branch)
    part = ticket_service.add_part(ticket.id, stocked_variant.id, 3, org_id=org.id)

    ticket_service.transition(ticket.id, 'CANCELLED', org_id=org.id, notes='Customer declined quote')

    assert db_session.get(TicketPart, part.id).state == PartState.RELEASED.value
    assert stock_of(branch.id, stocked_variant.id) == (10, 0)
    assert db_session.query(Movement).filter_by(ticket_id=ticket.id).count() == 0


def test_part_added_during_repair_is_consumed_immediately(db_session, org, branch, stocked_variant, stock_of):
    ticket = open_ticket(org, branch)
    walk(ticket.id, org, 'DIAGNOSING', 'IN_REPAIR')

    part = ticket_service.add_part(ticket.id, stocked_variant.id, 1, org_id=org.id)

    assert part.state == PartState.CONSUMED.value
    assert stock_of(branch.id, stocked_variant.id) == (9, 0)


def test_parts_cannot_be_added_after_repair(db_session, org, branch, stocked_variant):
    ticket = open_ticket(org, branch)
    walk(ticket.id, org, 'DIAGNOSING', 'IN_REPAIR', 'REPAIRED')

    with pytest.raises(InvalidTransition):
        ticket_service.add_part(ticket.id, stocked_variant.id, 1, org_id=org.id)


@pytest.mark.parametrize('path, racing_state', [
    ((), 'CANCELLED'),
    (('DIAGNOSING',), 'IN_REPAIR'),
])
def test_state_change_during_reservation_writes_nothing(
    db_session, org, branch, stocked_variant, stock_of, monkeypatch, path, racing_state,
):
    ticket = open_ticket(org, branch)
    walk(ticket.id, org, *path)
    real_require_variant = reservation_service.require_variant

    def require_variant_after_state_change(variant_id, org_id):
        ticket_service.transition(ticket.id, racing_state, org_id=org.id)
        return real_require_variant(variant_id, org_id)

    monkeypatch.setattr(reservation_service, 'require_variant', require_variant_after_state_change)

    with pytest.raises(ConcurrencyConflict) as exc_info:
        ticket_service.add_part(ticket.id, stocked_variant.id, 2, org_id=org.id)

    assert exc_info.value.details['ticket_id'] == ticket.id
    assert ticket_service.get_ticket(ticket.id, org_id=org.id).state == racing_state
    assert db_session.query(TicketPart).filter_by(ticket_id=ticket.id).count() == 0
    assert stock_of(branch.id, stocked_variant.id) == (10, 0)


def test_failed_consumption_keeps_new_state_and_reports_parts(db_session, org, branch, variant, stock_of):
    ticket = open_ticket(org, branch)
    part = ticket_service.add_part(ticket.id, variant.id, 2, org_id=org.id)
    walk(ticket.id, org, 'DIAGNOSING')

    with pytest.raises(ConcurrencyConflict) as exc_info:
        ticket_service.transition(ticket.id, 'IN_REPAIR', org_id=org.id)

    assert [f['part_id'] for f in exc_info.value.details['failed_parts']] == [part.id]
    assert ticket_service.get_ticket(ticket.id, org_id=org.id).state == 'IN_REPAIR'
    assert db_session.get(TicketPart, part.id).state == PartState.RESERVED.value
    assert stock_of(branch.id, variant.id) == (0, 2)


def test_update_ticket_fields(db_session, org, branch):
    ticket = open_ticket(org, branch)

    updated = ticket_service.update_ticket(ticket.id, org_id=org.id, diagnosis='Port corroded', warranty_days=30)

    assert updated.diagnosis == 'Port corroded'
    assert updated.warranty_days == 30
    assert updated.state == 'RECEIVED'

    with pytest.raises(ValidationFailed):
        ticket_service.update_ticket(ticket.id, org_id=org.id, state='DELIVERED')


def test_list_tickets_search_and_state(db_session, org, branch):
    open_ticket(org, branch)
    other = ticket_service.create_ticket(
        org_id=org.id, branch_id=branch.id,
        customer_name='Maria Perez', device='iPad Air', problem='Battery drains',
    )
    ticket_service.transition(other.id, 'DIAGNOSING', org_id=org.id)

    found = ticket_service.list_tickets(org_id=org.id, branch_id=branch.id, q='ipad')
    assert [t.id for t in found['data']] == [other.id]

    diagnosing = ticket_service.list_tickets(org_id=org.id, branch_id=branch.id, state='DIAGNOSING')
    assert diagnosing['pagination']['total'] == 1


def test_tickets_are_tenant_scoped(db_session, org, branch, other_org):
    ticket = open_ticket(org, branch)
    foreign_org, _ = other_org

    with pytest.raises(NotFound):
        ticket_service.get_ticket(ticket.id, org_id=foreign_org.id)
    with pytest.raises(NotFound):
        ticket_service.transition(ticket.id, 'DIAGNOSING', org_id=foreign_org.id)


def test_concurrent_transitions_apply_once(file_app, file_tenant):
    ids = file_tenant
    with file_app.app_context():
        ticket = ticket_service.create_ticket(
            org_id=ids['org_id'], branch_id=ids['branch_id'],
            customer_name='Race', device='Pixel 7', problem='Screen',
        )
        ticket_service.add_part(ticket.id, ids['variant_id'], 4, org_id=ids['org_id'])
        ticket_service.transition(ticket.id, 'DIAGNOSING', org_id=ids['org_id'])
        ticket_id = ticket.id
        db.session.remove()

    results = []
    lock = threading.Lock()

    def worker():
        with file_app.app_context():
            try:
                ticket_service.transition(ticket_id, 'IN_REPAIR', org_id=ids['org_id'])
                with lock:
                    results.append('moved')
            except (ConcurrencyConflict, InvalidTransition) as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    with file_app.app_context():
        level = db.session.query(StockLevel).filter_by(
            branch_id=ids['branch_id'], variant_id=ids['variant_id'],
        ).one()
        counters = (level.qty, level.reserved)
        to_in_repair = db.session.query(TicketHistory).filter_by(ticket_id=ticket_id, to_state='IN_REPAIR').count()
        state = db.session.get(Ticket, ticket_id).state
        db.session.remove()

    assert results.count('moved') == 1
    assert to_in_repair == 1
    assert state == 'IN_REPAIR'
    assert counters == (6, 0)


def test_ticket_to_dict_includes_children(db_session, org, branch, stocked_variant):
    ticket = open_ticket(org, branch)
    ticket_service.add_part(ticket.id, stocked_variant.id, 1, org_id=org.id)

    data = ticket_service.get_ticket(ticket.id, org_id=org.id).to_dict(include_children=True)

    assert data['state'] == 'RECEIVED'
    assert data['created_at'].endswith('Z')
    assert [p['state'] for p in data['parts']] == ['RESERVED']
    assert [h['to_state'] for h in data['history']] == ['RECEIVED']
