import asyncio

from conftest import CHAT_ID, OWNER_ID

from emperor.moderation.controller import IncomingMessage
from emperor.moderation.models import ResultStatus
from emperor.moderation.spam import FloodDetector, LinkSpamDetector

SPAMMER = 50


def test_flood_triggers_on_fourth_identical_message():
    detector = FloodDetector()
    results = [detector.register(CHAT_ID, SPAMMER, "hi", now=100.0 + i) for i in range(5)]

    assert results == [False, False, False, True, False]


def test_flood_window_resets_on_new_text_or_pause():
    detector = FloodDetector()
    assert not detector.register(CHAT_ID, SPAMMER, "a", now=0)
    assert not detector.register(CHAT_ID, SPAMMER, "a", now=1)
    assert not detector.register(CHAT_ID, SPAMMER, "b", now=2)
    assert not detector.register(CHAT_ID, SPAMMER, "b", now=3)
    assert not detector.register(CHAT_ID, SPAMMER, "b", now=9.5)
    assert not detector.register(CHAT_ID, SPAMMER, "b", now=10)
    assert not detector.register(CHAT_ID, SPAMMER, "b", now=11)
    assert detector.register(CHAT_ID, SPAMMER, "b", now=12)


def test_flood_windows_are_per_user():
    detector = FloodDetector()
    for i in range(3):
        detector.register(CHAT_ID, SPAMMER, "x", now=i)
    assert not detector.register(CHAT_ID, SPAMMER + 1, "x", now=3)
    assert detector.register(CHAT_ID, SPAMMER, "x", now=4)


def test_link_detector():
    links = LinkSpamDetector()
    assert links.is_link_spam("see https://example.com")
    assert links.is_link_spam("HTTP://EXAMPLE.COM")
    assert links.is_link_spam("join t.me/somechannel")
    assert links.is_link_spam("telegram.me/x")
    assert not links.is_link_spam("example dot com")
    assert not links.is_link_spam("")
    assert not links.is_link_spam(None)


def _message(text, message_id, timestamp, **kwargs):
    return IncomingMessage(
        chat_id=CHAT_ID,
        user_id=SPAMMER,
        text=text,
        message_id=message_id,
        timestamp=timestamp,
        **kwargs,
    )


def test_flood_mutes_once(store, platform, controller):
    async def scenario():
        replies = []
        for i in range(5):
            replies.append(await controller.on_message(_message("buy now", 100 + i, 1_000.0 + i)))
        return replies

    replies = asyncio.run(scenario())

    assert [r is not None for r in replies] == [False, False, False, True, False]
    assert replies[3].result.action == "auto-mute"
    assert platform.count("restrict_member") == 1
    restrict = next(call for call in platform.calls if call[0] == "restrict_member")
    assert restrict[4] == int(1_000.0 + 3 + 120)
    entry = store.load_audit(CHAT_ID)[0]
    assert (entry.action, entry.auto, entry.reason) == ("auto-mute", True, "flood")


def test_link_is_deleted_and_warned_even_with_command_keyword(store, platform, controller):
    message = _message("ban https://spam.example", 200, 2_000.0, reply_to_message_id=150, reply_to_user_id=60)
    reply = asyncio.run(controller.on_message(message))

    assert ("delete_message", CHAT_ID, 200) in platform.calls
    assert platform.count("ban_member") == 0
    assert reply.result.warn_count == 1
    assert store.load_warn(CHAT_ID, SPAMMER).last_reason == "link"


def test_third_link_bans_and_resets(store, platform, controller):
    async def scenario():
        for i in range(3):
            await controller.on_message(_message(f"t.me/chan{i}", 300 + i, 3_000.0 + i * 10))

    asyncio.run(scenario())

    assert platform.count("ban_member") == 1
    assert store.load_warn(CHAT_ID, SPAMMER).count == 0


def test_admin_links_are_policed_but_owner_is_exempt(store, platform, controller):
    platform.make_admin(CHAT_ID, SPAMMER)
    admin_reply = asyncio.run(controller.on_message(_message("https://docs.example", 400, 4_000.0)))

    assert ("delete_message", CHAT_ID, 400) in platform.calls
    assert admin_reply.result.warn_count == 1
    assert store.load_warn(CHAT_ID, SPAMMER).count == 1

    owner_message = IncomingMessage(
        chat_id=CHAT_ID, user_id=OWNER_ID, text="https://docs.example", message_id=401, timestamp=4_001.0
    )
    assert asyncio.run(controller.on_message(owner_message)) is None
    assert ("delete_message", CHAT_ID, 401) not in platform.calls
    assert store.load_warn(CHAT_ID, OWNER_ID).count == 0


def test_flood_mute_rejected_for_admin_is_reported(store, platform, controller):
    platform.make_admin(CHAT_ID, SPAMMER)
    platform.fail_operations.add("restrict_member")

    async def scenario():
        replies = []
        for i in range(4):
            replies.append(await controller.on_message(_message("same", 450 + i, 4_500.0 + i)))
        return replies

    replies = asyncio.run(scenario())

    assert replies[3].result.status == ResultStatus.REJECTED
    assert store.load_mute(CHAT_ID, SPAMMER) is None


def test_detectors_respect_antispam_toggle(store, platform, controller):
    store.set_toggle(CHAT_ID, "antispam_enabled", False)
    reply = asyncio.run(controller.on_message(_message("https://spam.example", 500, 5_000.0)))

    assert reply is None
    assert platform.count("delete_message") == 0


def test_link_warning_survives_failed_delete(store, platform, controller):
    platform.fail_message_ids.add(600)
    reply = asyncio.run(controller.on_message(_message("http://x.example", 600, 6_000.0)))

    assert reply.result.status == ResultStatus.OK
    assert store.load_warn(CHAT_ID, SPAMMER).count == 1
