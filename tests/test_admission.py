import asyncio
import time

from conftest import CHAT_ID, OWNER_ID

from emperor.moderation.actions import Target
from emperor.moderation.admission import AdmissionGate, AdmissionState
from emperor.moderation.models import ChatConfig

NEWBIE = 70


def _chat(store, **overrides):
    config = store.load_chat(CHAT_ID)
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def _callback_data(markup):
    return markup.inline_keyboard[0][0].callback_data


def test_captcha_timeout_bans_restricted_member(store, platform, gate):
    async def scenario():
        session = await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        await asyncio.sleep(0.15)
        return session

    session = asyncio.run(scenario())

    assert session.state == AdmissionState.BANNED
    assert ("restrict_member", CHAT_ID, NEWBIE, False, None) in platform.calls
    assert platform.count("ban_member") == 1
    assert _callback_data(platform.sent[-1][2]) == f"cap:{NEWBIE}"
    entry = store.load_audit(CHAT_ID)[0]
    assert (entry.action, entry.reason, entry.auto) == ("auto-ban", "captcha", True)
    assert not gate.has_pending_timer(CHAT_ID, NEWBIE)


def test_captcha_verified_before_deadline_is_not_banned(store, platform, gate):
    async def scenario():
        await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        reply = await gate.confirm_captcha(CHAT_ID, NEWBIE, NEWBIE)
        await asyncio.sleep(0.15)
        return reply

    reply = asyncio.run(scenario())

    assert reply.verified
    assert platform.count("ban_member") == 0
    assert ("restrict_member", CHAT_ID, NEWBIE, True, None) in platform.calls
    assert gate.get_session(CHAT_ID, NEWBIE).state == AdmissionState.VERIFIED
    assert not gate.has_pending_timer(CHAT_ID, NEWBIE)


def test_captcha_press_by_someone_else_is_a_no_op(store, platform, gate):
    async def scenario():
        await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        reply = await gate.confirm_captcha(CHAT_ID, NEWBIE + 1, NEWBIE)
        pending = gate.get_session(CHAT_ID, NEWBIE).state
        await gate.shutdown()
        return reply, pending

    reply, pending = asyncio.run(scenario())

    assert not reply.verified
    assert reply.message
    assert pending == AdmissionState.PENDING_CAPTCHA
    assert platform.count("restrict_member") == 1


def test_timeout_does_not_ban_member_unrestricted_by_admin(store, platform, gate):
    async def scenario():
        await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        platform.statuses[(CHAT_ID, NEWBIE)] = "member"
        await asyncio.sleep(0.15)

    asyncio.run(scenario())

    assert platform.count("ban_member") == 0


def test_expire_applies_at_most_once(store, platform, gate):
    async def scenario():
        await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        first = await gate.expire(CHAT_ID, NEWBIE)
        second = await gate.expire(CHAT_ID, NEWBIE)
        await asyncio.sleep(0.15)
        return first, second

    assert asyncio.run(scenario()) == (True, False)
    assert platform.count("ban_member") == 1


def test_failed_restriction_leaves_member_unrestricted(store, platform, gate):
    platform.fail_operations.add("restrict_member")

    async def scenario():
        return await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")

    session = asyncio.run(scenario())

    assert session.state == AdmissionState.UNRESTRICTED
    assert not gate.has_pending_timer(CHAT_ID, NEWBIE)
    assert gate.get_session(CHAT_ID, NEWBIE) is None


def test_bots_and_disabled_gates_are_skipped(store, platform, gate):
    async def scenario():
        bot = await gate.on_member_joined(_chat(store), NEWBIE, "Helper", is_bot=True)
        open_chat = await gate.on_member_joined(_chat(store, captcha_enabled=False), NEWBIE + 1, "Guest")
        return bot, open_chat

    bot, open_chat = asyncio.run(scenario())

    assert bot.state == open_chat.state == AdmissionState.UNRESTRICTED
    assert platform.count("restrict_member") == 0
    # Приветствие получил только человек
    assert len(platform.sent) == 1
    assert "Welcome" in platform.sent[0][1]


def test_forced_join_takes_precedence_and_rechecks_membership(store, platform, gate):
    chat = _chat(store, force_join_enabled=True, force_join_channel="@empire_news", welcome_enabled=False)

    async def scenario():
        session = await gate.on_member_joined(chat, NEWBIE, "Newbie")
        platform.statuses[("@empire_news", NEWBIE)] = "left"
        not_yet = await gate.confirm_forced_join(chat, NEWBIE, NEWBIE)
        other = await gate.confirm_forced_join(chat, NEWBIE + 1, NEWBIE)
        platform.statuses[("@empire_news", NEWBIE)] = "member"
        joined = await gate.confirm_forced_join(chat, NEWBIE, NEWBIE)
        return session, not_yet, other, joined

    session, not_yet, other, joined = asyncio.run(scenario())

    assert session.state == AdmissionState.PENDING_FORCED_JOIN
    assert _callback_data(platform.sent[0][2]) == f"fj:{NEWBIE}"
    assert not gate.has_pending_timer(CHAT_ID, NEWBIE)
    assert not not_yet.verified and "not a member" in not_yet.message
    assert not other.verified
    assert joined.verified
    assert ("restrict_member", CHAT_ID, NEWBIE, True, None) in platform.calls
    assert gate.get_session(CHAT_ID, NEWBIE).state == AdmissionState.VERIFIED


def test_old_captcha_button_does_not_undo_a_later_mute(store, platform, engine, gate):
    async def scenario():
        await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        first = await gate.confirm_captcha(CHAT_ID, NEWBIE, NEWBIE)
        await engine.mute(CHAT_ID, OWNER_ID, Target(NEWBIE), "mute 1d")
        replay = await gate.confirm_captcha(CHAT_ID, NEWBIE, NEWBIE)
        return first, replay

    first, replay = asyncio.run(scenario())

    assert first.verified
    assert not replay.verified
    assert platform.statuses[(CHAT_ID, NEWBIE)] == "restricted"
    # вход, подтверждение, мут
    assert platform.count("restrict_member") == 3
    assert store.load_mute(CHAT_ID, NEWBIE) is not None


def test_old_forced_join_button_does_not_undo_a_later_mute(store, platform, engine, gate):
    chat = _chat(store, force_join_enabled=True, force_join_channel="@empire_news")
    platform.statuses[("@empire_news", NEWBIE)] = "member"

    async def scenario():
        await gate.on_member_joined(chat, NEWBIE, "Newbie")
        first = await gate.confirm_forced_join(chat, NEWBIE, NEWBIE)
        await engine.mute(CHAT_ID, OWNER_ID, Target(NEWBIE), "mute 1d")
        replay = await gate.confirm_forced_join(chat, NEWBIE, NEWBIE)
        return first, replay

    first, replay = asyncio.run(scenario())

    assert first.verified
    assert not replay.verified
    assert platform.statuses[(CHAT_ID, NEWBIE)] == "restricted"
    assert platform.count("restrict_member") == 3


def test_press_after_timeout_ban_changes_nothing(store, platform, gate):
    async def scenario():
        await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        await asyncio.sleep(0.15)
        return await gate.confirm_captcha(CHAT_ID, NEWBIE, NEWBIE)

    reply = asyncio.run(scenario())

    assert not reply.verified
    assert reply.message == ""
    assert platform.names()[-1] == "ban_member"
    assert platform.statuses[(CHAT_ID, NEWBIE)] == "kicked"
    assert gate.get_session(CHAT_ID, NEWBIE).state == AdmissionState.BANNED


def test_press_without_session_lifts_only_a_plain_restriction(store, platform, gate):
    muted = NEWBIE + 1
    platform.statuses[(CHAT_ID, NEWBIE)] = "restricted"
    platform.statuses[(CHAT_ID, muted)] = "restricted"
    store.set_mute(CHAT_ID, muted, int(time.time()) + 3600)

    async def scenario():
        lifted = await gate.confirm_captcha(CHAT_ID, NEWBIE, NEWBIE)
        again = await gate.confirm_captcha(CHAT_ID, NEWBIE, NEWBIE)
        kept = await gate.confirm_captcha(CHAT_ID, muted, muted)
        free = await gate.confirm_captcha(CHAT_ID, NEWBIE + 2, NEWBIE + 2)
        return lifted, again, kept, free

    lifted, again, kept, free = asyncio.run(scenario())

    assert lifted.verified
    assert not again.verified
    assert not kept.verified
    assert not free.verified
    assert platform.count("restrict_member") == 1
    assert platform.statuses[(CHAT_ID, muted)] == "restricted"


def test_confirm_just_before_deadline_prevents_ban(store, platform, locks):
    gate = AdmissionGate(store, platform, locks, timeout_sec=0.3)

    async def scenario():
        await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        await asyncio.sleep(0.2)
        reply = await gate.confirm_captcha(CHAT_ID, NEWBIE, NEWBIE)
        await asyncio.sleep(0.25)
        return reply

    reply = asyncio.run(scenario())

    assert reply.verified
    assert platform.count("ban_member") == 0
    assert not gate.has_pending_timer(CHAT_ID, NEWBIE)
    assert platform.statuses[(CHAT_ID, NEWBIE)] == "member"


def test_member_still_restricted_at_deadline_is_banned(store, platform, locks):
    gate = AdmissionGate(store, platform, locks, timeout_sec=0.2)

    async def scenario():
        await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        await asyncio.sleep(0.1)
        before = platform.count("ban_member")
        await asyncio.sleep(0.2)
        return before

    before = asyncio.run(scenario())

    assert before == 0
    assert platform.count("ban_member") == 1
    assert not gate.has_pending_timer(CHAT_ID, NEWBIE)


def test_rejoin_starts_a_new_check(store, platform, gate):
    async def scenario():
        await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        await asyncio.sleep(0.15)
        session = await gate.on_member_joined(_chat(store), NEWBIE, "Newbie")
        reply = await gate.confirm_captcha(CHAT_ID, NEWBIE, NEWBIE)
        return session, reply

    session, reply = asyncio.run(scenario())

    assert reply.verified
    assert session.state == AdmissionState.VERIFIED
    assert platform.count("ban_member") == 1


def test_chat_config_defaults():
    config = ChatConfig(chat_id=1)
    assert (config.welcome_enabled, config.antispam_enabled, config.captcha_enabled) == (True, True, True)
    assert config.force_join_enabled is False
