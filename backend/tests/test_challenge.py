"""
Unit tests for the phone -> code challenge state machine.
"""

import asyncio

import pytest

from fakes import FakeChannel, FakeClock
from medaccess.schemas.authorization import ChallengeErrorCode, ChallengeStep
from medaccess.services.challenge import ChallengeStateMachine
from medaccess.services.otp_channel import OtpChannelError


def make_machine(channel=None, clock=None, seed_phone=None):
    return ChallengeStateMachine(
        channel or FakeChannel(),
        seed_phone=seed_phone,
        cooldown_seconds=60,
        min_digits=10,
        clock=clock or FakeClock(),
    )


def at_code_entry(channel=None, clock=None):
    machine = make_machine(channel, clock)
    machine.set_phone("0708091011")
    asyncio.run(machine.send_code())
    assert machine.step == ChallengeStep.CODE_ENTRY
    return machine


# ── Phone entry ──────────────────────────────────────────────────────

def test_seed_phone_shows_national_number():
    machine = make_machine(seed_phone="2250708091011")
    assert machine.phone_number == "0708091011"
    assert machine.step == ChallengeStep.PHONE_ENTRY


@pytest.mark.parametrize("phone", ["", "070809", "070809101", "+225 07 08", "abcdefghijk"])
def test_short_phone_is_rejected_without_channel_call(phone):
    channel = FakeChannel()
    machine = make_machine(channel)
    machine.set_phone(phone)
    asyncio.run(machine.send_code())

    assert machine.step == ChallengeStep.PHONE_ENTRY
    assert machine.last_error.code == ChallengeErrorCode.INVALID_PHONE
    assert channel.sent == []


def test_send_success_moves_to_code_entry_and_starts_cooldown():
    channel = FakeChannel()
    machine = make_machine(channel)
    machine.set_phone("07 08 09 10 11")
    asyncio.run(machine.send_code())

    assert channel.sent == ["2250708091011"]
    assert machine.step == ChallengeStep.CODE_ENTRY
    assert machine.cooldown_remaining_seconds == 60
    assert machine.last_error is None
    assert not machine.can_resend


def test_send_failure_surfaces_channel_message():
    channel = FakeChannel(send_error=OtpChannelError("No user found with this phone number."))
    machine = make_machine(channel)
    machine.set_phone("0708091011")
    asyncio.run(machine.send_code())

    assert machine.step == ChallengeStep.PHONE_ENTRY
    assert machine.last_error.code == ChallengeErrorCode.SEND_FAILED
    assert machine.last_error.message == "No user found with this phone number."
    assert not machine.is_sending


def test_send_failure_without_message_uses_generic_text():
    channel = FakeChannel(send_error=OtpChannelError())
    machine = make_machine(channel)
    machine.set_phone("0708091011")
    asyncio.run(machine.send_code())

    assert machine.last_error.code == ChallengeErrorCode.SEND_FAILED
    assert "send" in machine.last_error.message.lower()


def test_unexpected_send_exception_becomes_send_failed():
    channel = FakeChannel(send_error=ConnectionError("redis down"))
    machine = make_machine(channel)
    machine.set_phone("0708091011")
    asyncio.run(machine.send_code())

    assert machine.step == ChallengeStep.PHONE_ENTRY
    assert machine.last_error.code == ChallengeErrorCode.SEND_FAILED
    assert "redis" not in machine.last_error.message


def test_set_phone_ignored_outside_phone_entry():
    machine = at_code_entry()
    machine.set_phone("0102030405")
    assert machine.phone_number == "0708091011"


# ── Code entry ───────────────────────────────────────────────────────

def test_digit_entry_auto_advances_focus():
    machine = at_code_entry()
    machine.submit_digit(0, "1")
    assert machine.focus_index == 1
    machine.submit_digit(1, "2")
    machine.submit_digit(2, "3")
    machine.submit_digit(3, "4")
    assert machine.attempt_code == ["1", "2", "3", "4"]
    assert machine.focus_index == 3


def test_digit_entry_keeps_first_digit_only():
    machine = at_code_entry()
    machine.submit_digit(0, "a57")
    assert machine.attempt_code[0] == "5"


def test_non_digit_input_is_rejected():
    machine = at_code_entry()
    machine.submit_digit(0, "7")
    machine.submit_digit(0, "x")
    assert machine.attempt_code[0] == "7"


def test_empty_value_clears_slot():
    machine = at_code_entry()
    machine.submit_digit(2, "7")
    machine.submit_digit(2, "")
    assert machine.attempt_code[2] == ""
    assert machine.focus_index == 2


def test_digit_index_out_of_range():
    machine = at_code_entry()
    with pytest.raises(ValueError):
        machine.submit_digit(4, "1")
    with pytest.raises(ValueError):
        machine.backspace(-1)


def test_backspace_from_empty_slot_retreats_focus():
    machine = at_code_entry()
    machine.submit_digit(0, "1")
    machine.backspace(1)
    assert machine.focus_index == 0
    assert machine.attempt_code[0] == "1"


def test_backspace_clears_filled_slot():
    machine = at_code_entry()
    machine.submit_digit(0, "1")
    machine.backspace(0)
    assert machine.attempt_code[0] == ""
    assert machine.focus_index == 0


def test_backspace_on_first_empty_slot_stays():
    machine = at_code_entry()
    machine.backspace(0)
    assert machine.focus_index == 0


def test_paste_strips_non_digits_and_truncates():
    machine = at_code_entry()
    machine.paste(" 12-34 56")
    assert machine.attempt_code == ["1", "2", "3", "4"]
    assert machine.focus_index == 3


def test_partial_paste_fills_from_first_slot():
    machine = at_code_entry()
    machine.paste("98")
    assert machine.attempt_code == ["9", "8", "", ""]
    assert machine.focus_index == 2


def test_paste_without_digits_is_noop():
    machine = at_code_entry()
    machine.submit_digit(0, "1")
    machine.paste("abc")
    assert machine.attempt_code == ["1", "", "", ""]


def test_code_never_exceeds_four_characters():
    machine = at_code_entry()
    machine.paste("123456789")
    for index in range(4):
        machine.submit_digit(index, "99")
    assert len(machine.code) == 4


def test_digits_ignored_during_phone_entry():
    machine = make_machine()
    machine.submit_digit(0, "1")
    machine.paste("1234")
    assert machine.attempt_code == ["", "", "", ""]


# ── Verification ─────────────────────────────────────────────────────

@pytest.mark.parametrize("entered", ["", "1", "12", "123"])
def test_incomplete_code_rejected_without_channel_call(entered):
    channel = FakeChannel()
    machine = at_code_entry(channel)
    machine.paste(entered)
    asyncio.run(machine.verify())

    assert machine.last_error.code == ChallengeErrorCode.INCOMPLETE_CODE
    assert channel.verified == []
    assert machine.step == ChallengeStep.CODE_ENTRY


def test_gap_in_code_is_incomplete():
    channel = FakeChannel()
    machine = at_code_entry(channel)
    machine.submit_digit(0, "1")
    machine.submit_digit(1, "2")
    machine.submit_digit(3, "4")
    asyncio.run(machine.verify())

    assert machine.last_error.code == ChallengeErrorCode.INCOMPLETE_CODE
    assert channel.verified == []


def test_verify_success_resolves_with_identity():
    channel = FakeChannel()
    machine = at_code_entry(channel)
    machine.paste("1234")
    asyncio.run(machine.verify())

    assert channel.verified == [("2250708091011", "1234")]
    assert machine.step == ChallengeStep.RESOLVED
    assert machine.identity.id == "1"
    assert machine.last_error is None
    assert machine.is_terminal


def test_incorrect_code_clears_slots_and_refocuses():
    channel = FakeChannel(verify_error=OtpChannelError())
    machine = at_code_entry(channel)
    machine.paste("9999")
    asyncio.run(machine.verify())

    assert machine.step == ChallengeStep.CODE_ENTRY
    assert machine.attempt_code == ["", "", "", ""]
    assert machine.focus_index == 0
    assert machine.last_error.code == ChallengeErrorCode.INCORRECT_CODE
    assert not machine.is_verifying


def test_incorrect_code_retry_is_unlimited():
    channel = FakeChannel(verify_error=OtpChannelError("Incorrect verification code."))
    machine = at_code_entry(channel)
    for _ in range(10):
        machine.paste("0000")
        asyncio.run(machine.verify())
    assert len(channel.verified) == 10

    channel.verify_error = None
    machine.paste("1234")
    asyncio.run(machine.verify())
    assert machine.step == ChallengeStep.RESOLVED


# ── Cooldown and resend ──────────────────────────────────────────────

def test_cooldown_counts_down_one_per_second():
    clock = FakeClock()
    machine = at_code_entry(clock=clock)
    for expected in range(60, 0, -1):
        assert machine.cooldown_remaining_seconds == expected
        clock.advance(1)
    assert machine.cooldown_remaining_seconds == 0
    clock.advance(30)
    assert machine.cooldown_remaining_seconds == 0


def test_cooldown_ignores_partial_seconds():
    clock = FakeClock()
    machine = at_code_entry(clock=clock)
    clock.advance(0.9)
    assert machine.cooldown_remaining_seconds == 60
    clock.advance(0.2)
    assert machine.cooldown_remaining_seconds == 59


def test_resend_blocked_during_cooldown():
    channel = FakeChannel()
    clock = FakeClock()
    machine = at_code_entry(channel, clock)
    clock.advance(59)
    asyncio.run(machine.resend())
    assert channel.sent == ["2250708091011"]


def test_resend_after_cooldown_resets_window():
    channel = FakeChannel()
    clock = FakeClock()
    machine = at_code_entry(channel, clock)
    clock.advance(60)
    assert machine.can_resend
    machine.submit_digit(0, "5")

    asyncio.run(machine.resend())

    assert channel.sent == ["2250708091011", "2250708091011"]
    assert machine.step == ChallengeStep.CODE_ENTRY
    assert machine.cooldown_remaining_seconds == 60
    clock.advance(3)
    assert machine.cooldown_remaining_seconds == 57


def test_resend_failure_keeps_code_entry():
    channel = FakeChannel()
    clock = FakeClock()
    machine = at_code_entry(channel, clock)
    clock.advance(61)
    channel.send_error = OtpChannelError("Too many code requests. Please try again later.")
    asyncio.run(machine.resend())

    assert machine.step == ChallengeStep.CODE_ENTRY
    assert machine.last_error.code == ChallengeErrorCode.SEND_FAILED
    assert machine.cooldown_remaining_seconds == 0


# ── Back and cancel ──────────────────────────────────────────────────

def test_back_rearms_phone_entry():
    channel = FakeChannel()
    machine = at_code_entry(channel)
    machine.paste("12")
    machine.back()

    assert machine.step == ChallengeStep.PHONE_ENTRY
    assert machine.attempt_code == ["", "", "", ""]
    assert machine.last_error is None
    assert machine.cooldown_remaining_seconds == 0

    # Verifying is impossible until a fresh code is sent.
    asyncio.run(machine.verify())
    assert channel.verified == []


@pytest.mark.parametrize("reach_code_entry", [False, True])
def test_cancel_discards(reach_code_entry):
    channel = FakeChannel()
    machine = at_code_entry(channel) if reach_code_entry else make_machine(channel)
    machine.cancel()

    assert machine.discarded
    assert machine.is_terminal
    machine.paste("1234")
    asyncio.run(machine.verify())
    asyncio.run(machine.send_code())
    assert channel.verified == []


def test_late_send_response_after_cancel_is_dropped():
    async def scenario():
        channel = FakeChannel()
        machine = make_machine(channel)
        machine.set_phone("0708091011")
        release = channel.hold_next()
        task = asyncio.create_task(machine.send_code())
        await asyncio.sleep(0)
        assert machine.is_sending
        machine.cancel()
        release.set()
        await task
        return machine

    machine = asyncio.run(scenario())
    assert machine.step == ChallengeStep.PHONE_ENTRY
    assert machine.discarded


def test_late_verify_response_after_back_is_dropped():
    async def scenario():
        channel = FakeChannel()
        machine = make_machine(channel)
        machine.set_phone("0708091011")
        await machine.send_code()
        machine.paste("1234")
        release = channel.hold_next()
        task = asyncio.create_task(machine.verify())
        await asyncio.sleep(0)
        machine.back()
        release.set()
        await task
        return machine

    machine = asyncio.run(scenario())
    assert machine.step == ChallengeStep.PHONE_ENTRY
    assert machine.identity is None
    assert not machine.is_verifying
