from couplet.reminders.enums import ErrorKind, RecipientRole
from couplet.reminders.fanout import FanoutCoordinator
from couplet.reminders.models import Couple, UserProfile


def couple_reminder(make_reminder, **fields):
    fields.setdefault("type", "couple")
    fields.setdefault("couple_id", "c1")
    fields.setdefault("creator_id", "alice")
    return make_reminder(**fields)


def test_personal_reminder_goes_to_owner(fanout, transport, make_user, make_reminder, now):
    make_user("alice")
    result = fanout.deliver(make_reminder(), now=now)

    assert result.success
    assert transport.tokens() == ["token-alice"]
    assert result.per_recipient[0].role == RecipientRole.OWNER


def test_personal_reminder_without_owner_aborts(fanout, transport, make_reminder, now):
    result = fanout.deliver(make_reminder(owner_id=None), now=now)

    assert not result.success
    assert result.error_kind == ErrorKind.MISSING_OWNER
    assert transport.sent == []


def test_couple_reminder_reaches_both_members(fanout, transport, make_couple, make_reminder, now):
    make_couple()
    result = fanout.deliver(couple_reminder(make_reminder), now=now)

    assert result.success
    assert sorted(transport.tokens()) == ["token-alice", "token-bob"]
    by_token = dict(transport.sent)
    assert by_token["token-bob"].data["type"] == "couple_reminder"
    assert "Alice" in by_token["token-bob"].body
    assert by_token["token-alice"].data["type"] == "reminder"
    roles = {o.recipient_id: o.role for o in result.per_recipient}
    assert roles == {"bob": RecipientRole.PARTNER, "alice": RecipientRole.CREATOR}


def test_partner_category_toggle_only_affects_partner(db, fanout, transport, make_couple, make_reminder, now):
    make_couple()
    db.get(UserProfile, "bob").notification_preferences = {"coupleReminders": False}
    db.commit()

    result = fanout.deliver(couple_reminder(make_reminder), now=now)

    assert result.success
    assert transport.tokens() == ["token-alice"]
    outcomes = {o.recipient_id: o for o in result.per_recipient}
    assert outcomes["bob"].error_kind == "suppressed:category-disabled"


def test_partner_without_token_still_counts_as_delivered(db, fanout, transport, make_couple, make_reminder, now):
    make_couple()
    db.get(UserProfile, "bob").push_token = None
    db.commit()

    result = fanout.deliver(couple_reminder(make_reminder), now=now)

    assert result.success
    assert transport.tokens() == ["token-alice"]
    outcomes = {o.recipient_id: o for o in result.per_recipient}
    assert outcomes["bob"].error_kind == ErrorKind.NO_TOKEN
    assert not outcomes["bob"].success
    assert outcomes["alice"].success

def test_invalid_couples_abort_before_sending(db, fanout, transport, make_couple, make_user, make_reminder, now):
    make_couple()
    make_user("carol")
    db.add(Couple(id="c3", members=["alice", "bob", "carol"]))
    db.commit()

    three_members = fanout.deliver(couple_reminder(make_reminder, couple_id="c3"), now=now)
    missing = fanout.deliver(couple_reminder(make_reminder, couple_id="nope"), now=now)
    outsider = fanout.deliver(couple_reminder(make_reminder, creator_id="carol"), now=now)

    for result in (three_members, missing, outsider):
        assert not result.success
        assert result.error_kind == ErrorKind.INVALID_COUPLE
        assert result.per_recipient == []
    assert transport.sent == []


def test_one_failing_recipient_does_not_block_the_other(dispatcher, transport, make_couple, make_reminder, now):
    make_couple()

    class FlakyDispatcher:
        directory = dispatcher.directory

        def send(self, recipient_id, reminder, **kwargs):
            if recipient_id == "bob":
                raise RuntimeError("boom")
            return dispatcher.send(recipient_id, reminder, **kwargs)

    result = FanoutCoordinator(FlakyDispatcher()).deliver(couple_reminder(make_reminder), now=now)

    assert result.success
    assert transport.tokens() == ["token-alice"]
    failed = [o for o in result.per_recipient if not o.success]
    assert failed[0].recipient_id == "bob"
    assert failed[0].error_kind == ErrorKind.TRANSPORT


def test_all_recipients_failing_is_a_failure(fanout, transport, make_couple, make_reminder, now):
    make_couple()
    transport.errors["token-alice"] = ConnectionError("down")
    transport.errors["token-bob"] = ConnectionError("down")

    result = fanout.deliver(couple_reminder(make_reminder), now=now)

    assert not result.success
    assert result.all_transport_failures
    assert "alice:transport" in result.error_summary()
