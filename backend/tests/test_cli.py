"""
Tests for the Flask CLI commands.
"""

import pytest

from repairdesk.models import Branch, CashCut, CashRegister, Organization


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_system_init_is_idempotent(db_session, runner):
    result = runner.invoke(args=['system', 'init', '--org-code', 'ACME', '--branch-code', 'MTY'])
    assert result.exit_code == 0, result.output
    assert 'Created organization' in result.output

    again = runner.invoke(args=['system', 'init', '--org-code', 'ACME', '--branch-code', 'MTY'])
    assert again.exit_code == 0, again.output
    assert 'Using existing organization' in again.output

    assert db_session.query(Organization).filter_by(code='ACME').count() == 1
    assert db_session.query(Branch).count() == 1
    assert db_session.query(CashRegister).count() == 1


def test_folio_preview_and_next(db_session, runner, org, branch):
    args = ['--org-id', str(org.id), '--branch-id', str(branch.id)]

    preview = runner.invoke(args=['folios', 'preview', 'lab', *args])
    assert preview.exit_code == 0, preview.output
    assert preview.output.strip().startswith('LAB-MTY-')
    assert preview.output.strip().endswith('-0001')

    first = runner.invoke(args=['folios', 'next', 'LAB', *args])
    second = runner.invoke(args=['folios', 'next', 'LAB', *args])
    assert first.output.strip().endswith('-0001')
    assert second.output.strip().endswith('-0002')


def test_folio_for_foreign_branch_fails(db_session, runner, org, other_org):
    _, foreign_branch = other_org
    result = runner.invoke(args=['folios', 'next', 'VTA', '--org-id', str(org.id), '--branch-id', str(foreign_branch.id)])

    assert result.exit_code != 0
    assert 'NOT_FOUND' in result.output


def test_cash_cut_command(db_session, runner, org, branch, register):
    result = runner.invoke(args=[
        'cash', 'cut',
        '--org-id', str(org.id),
        '--branch-id', str(branch.id),
        '--register-id', str(register.id),
        '--date', '2025-01-31',
        '--initial', '1000',
        '--adjustments=-50',
    ])

    assert result.exit_code == 0, result.output
    assert 'final:       950' in result.output
    assert db_session.query(CashCut).count() == 1

    duplicate = runner.invoke(args=[
        'cash', 'cut',
        '--org-id', str(org.id),
        '--branch-id', str(branch.id),
        '--register-id', str(register.id),
        '--date', '2025-01-31',
    ])
    assert duplicate.exit_code != 0
    assert 'DUPLICATE_CASH_CUT' in duplicate.output

    listing = runner.invoke(args=['cash', 'registers', '--org-id', str(org.id), '--branch-id', str(branch.id)])
    assert 'CAJA-01' in listing.output
    assert 'last cut 2025-01-31 final=950' in listing.output
