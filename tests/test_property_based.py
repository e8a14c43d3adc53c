"""
Property-based tests for the Wedding RSVP service.
Uses Hypothesis to generate test cases and verify properties hold across all inputs.
"""

from datetime import datetime, timedelta, timezone

from hypothesis import given, settings, strategies as st
from hypothesis.strategies import composite

from rsvp_shared.errors import ConflictError
from rsvp_shared.groups import GroupCoordinator
from rsvp_shared.invitations import InvitationValidator
from rsvp_shared.keys import (
    build_admin_date,
    build_rsvp_sk,
    format_timestamp,
    guest_key,
    normalize_code,
    parse_admin_date,
    parse_rsvp_sk,
    parse_timestamp,
)
from rsvp_shared.rsvp_writer import RsvpWriter, latest_response, response_order

from factories import EVENT_ID, FakeClock, seed_group, seed_guest, stored_guest, stored_invitation
from inmemory_gateway import InMemoryGateway


TOKEN_ALPHABET = 'abcdefghijklmnopqrstuvwxyz0123456789._-+'
STATUSES = ('attending', 'not_attending', 'maybe')


@composite
def valid_email(draw):
    """Generate lowercase email addresses without key separators."""
    local_part = draw(st.text(alphabet=TOKEN_ALPHABET, min_size=1, max_size=30))
    domain = draw(st.text(alphabet='abcdefghijklmnopqrstuvwxyz', min_size=1, max_size=20))
    return f'{local_part}@{domain}.com'


@composite
def timestamps(draw):
    moment = draw(st.datetimes(
        min_value=datetime(2020, 1, 1),
        max_value=datetime(2030, 12, 31),
        timezones=st.just(timezone.utc)
    ))
    return format_timestamp(moment)


@composite
def history_records(draw):
    """A guest's RSVP history with distinct ids, in arbitrary order."""
    ids = draw(st.lists(st.text(alphabet='0123456789ABCDEFGHJKMNPQRSTVWXYZ', min_size=4, max_size=8),
                        min_size=1, max_size=8, unique=True))
    return [
        {
            'rsvp_id': rsvp_id,
            'response_timestamp': draw(timestamps()),
            'response_status': draw(st.sampled_from(STATUSES)),
        }
        for rsvp_id in ids
    ]


class TestKeyProperties:
    """Property: every key decodes to the components it was built from."""

    @given(email=valid_email(), timestamp=timestamps(),
           rsvp_id=st.text(alphabet=TOKEN_ALPHABET, min_size=1, max_size=26))
    def test_rsvp_sort_key_round_trip(self, email, timestamp, rsvp_id):
        assert parse_rsvp_sk(build_rsvp_sk(email, timestamp, rsvp_id)) == (email, timestamp, rsvp_id)

    @given(timestamp=timestamps(), status=st.sampled_from(('pending',) + STATUSES))
    def test_admin_date_round_trip(self, timestamp, status):
        assert parse_admin_date(build_admin_date(timestamp, status)) == (timestamp[:10], status)

    @given(first=timestamps(), second=timestamps())
    def test_timestamp_strings_order_like_times(self, first, second):
        """Property: fixed-width timestamps compare lexicographically in time order."""
        assert (first < second) == (parse_timestamp(first) < parse_timestamp(second))

    @given(email=valid_email(), upper=st.lists(st.booleans(), min_size=1))
    def test_email_case_never_changes_the_key(self, email, upper):
        mixed = ''.join(c.upper() if upper[n % len(upper)] else c for n, c in enumerate(email))
        assert guest_key(EVENT_ID, mixed) == guest_key(EVENT_ID, email)

    @given(code=st.text(alphabet='ABCDEFGHJKMNPQRSTVWXYZ0123456789', min_size=4, max_size=12),
           padding=st.text(alphabet=' \t', max_size=3))
    def test_code_normalization_is_idempotent(self, code, padding):
        normalized = normalize_code(padding + code.lower() + padding)
        assert normalized == code
        assert normalize_code(normalized) == normalized


class TestLatestWinsProperties:
    """Property: current state is the max of history, whatever the arrival order."""

    @given(records=history_records(), order=st.randoms(use_true_random=False))
    def test_fold_is_independent_of_order(self, records, order):
        shuffled = list(records)
        order.shuffle(shuffled)
        assert latest_response(shuffled) is not None
        assert response_order(latest_response(shuffled)) == response_order(latest_response(records))

    @settings(max_examples=50, deadline=None)
    @given(offsets=st.lists(st.integers(min_value=0, max_value=3600), min_size=1, max_size=6),
           statuses=st.lists(st.sampled_from(STATUSES), min_size=6, max_size=6))
    def test_guest_row_matches_latest_history_for_any_commit_order(self, offsets, statuses):
        """Submissions stamped at arbitrary times and committed in list order still converge."""
        gateway = InMemoryGateway()
        start = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
        clock = FakeClock(start)
        writer = RsvpWriter(gateway, clock=clock)
        seed_guest(gateway, 'jane@example.com', 'ABC123')

        for offset, status in zip(offsets, statuses):
            clock.now = start + timedelta(seconds=offset)
            writer.submit('jane@example.com', EVENT_ID, status)

        winner = writer.current('jane@example.com', EVENT_ID)
        guest = stored_guest(gateway, 'jane@example.com')
        assert guest['last_rsvp_id'] == winner['rsvp_id']
        assert guest['rsvp_status'] == winner['response_status']
        assert guest['EventStatus'].endswith('#STATUS#' + winner['response_status'])


class TestInvitationProperties:
    """Property: validation never changes invitation state."""

    @settings(max_examples=50)
    @given(lookups=st.integers(min_value=1, max_value=10),
           current_uses=st.integers(min_value=0, max_value=3),
           max_uses=st.integers(min_value=1, max_value=3))
    def test_validate_is_side_effect_free(self, lookups, current_uses, max_uses):
        gateway = InMemoryGateway()
        seed_guest(gateway, 'jane@example.com', 'ABC123',
                   invitation={'current_uses': current_uses, 'max_uses': max_uses})
        before = dict(stored_invitation(gateway, 'ABC123'))
        validator = InvitationValidator(gateway, clock=FakeClock())

        results = {validator.validate('abc123')['valid'] for _ in range(lookups)}

        assert results == {current_uses < max_uses}
        assert stored_invitation(gateway, 'ABC123') == before

    @settings(max_examples=30)
    @given(max_uses=st.integers(min_value=1, max_value=4), attempts=st.integers(min_value=1, max_value=8))
    def test_uses_never_exceed_maximum(self, max_uses, attempts):
        gateway = InMemoryGateway()
        seed_guest(gateway, 'jane@example.com', 'ABC123', invitation={'max_uses': max_uses})
        validator = InvitationValidator(gateway, clock=FakeClock())

        accepted = 0
        for n in range(attempts):
            try:
                validator.consume('ABC123', f'rsvp-{n}')
                accepted += 1
            except ConflictError:
                pass

        assert accepted == min(attempts, max_uses)
        assert stored_invitation(gateway, 'ABC123')['current_uses'] == accepted


class TestGroupProperties:
    """Property: recomputing a group is idempotent."""

    @settings(max_examples=50)
    @given(members=st.lists(
        st.tuples(st.sampled_from(('pending',) + STATUSES), st.integers(min_value=0, max_value=3)),
        min_size=1, max_size=5
    ))
    def test_second_recompute_writes_nothing(self, members):
        gateway = InMemoryGateway()
        emails = []
        for n, (status, plus_ones) in enumerate(members):
            email = f'member{n}@example.com'
            emails.append(email)
            seed_guest(gateway, email, f'MEM{n:03d}', group_id='fam',
                       rsvp_status=status, plus_ones_count=plus_ones)
        seed_group(gateway, 'fam', emails)
        coordinator = GroupCoordinator(gateway, FakeClock())

        first = coordinator.recompute(EVENT_ID, 'fam')
        writes = gateway.calls.count('update_item')
        second = coordinator.recompute(EVENT_ID, 'fam')

        assert second == first
        assert gateway.calls.count('update_item') == writes
        assert first['current_party_size'] == sum(
            1 + plus_ones for status, plus_ones in members if status == 'attending'
        )
