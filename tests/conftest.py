import fakeredis
import pytest

from emperor.moderation.actions import ModerationEngine
from emperor.moderation.admission import AdmissionGate
from emperor.moderation.controller import ModerationController
from emperor.moderation.errors import PlatformRejected
from emperor.moderation.locks import KeyedLocks
from emperor.moderation.models import ChatConfig
from emperor.moderation.permissions import RoleResolver
from emperor.moderation.platform import ChatAdmin
from emperor.moderation.storage import ModerationStore

CHAT_ID = -100123
OWNER_ID = 1
BOT_ID = 999


class FakePlatform:
    """Замена TelegramPlatform: пишет вызовы и хранит статусы участников."""

    def __init__(self):
        self.calls = []
        self.statuses = {}
        self.admins = {}
        self.fail_operations = set()
        self.fail_message_ids = set()
        self.sent = []
        self.bot_id = BOT_ID
        self._next_message_id = 5000

    def _maybe_fail(self, operation):
        if operation in self.fail_operations:
            raise PlatformRejected("Bad Request: not enough rights", operation)

    async def restrict_member(self, chat_id, user_id, can_send, until_ts=None):
        self._maybe_fail("restrict_member")
        self.calls.append(("restrict_member", chat_id, user_id, can_send, until_ts))
        self.statuses[(chat_id, user_id)] = "member" if can_send else "restricted"

    async def ban_member(self, chat_id, user_id):
        self._maybe_fail("ban_member")
        self.calls.append(("ban_member", chat_id, user_id))
        self.statuses[(chat_id, user_id)] = "kicked"

    async def unban_member(self, chat_id, user_id):
        self._maybe_fail("unban_member")
        self.calls.append(("unban_member", chat_id, user_id))
        self.statuses[(chat_id, user_id)] = "left"

    async def get_member_status(self, chat_ref, user_id):
        self._maybe_fail("get_member_status")
        self.calls.append(("get_member_status", chat_ref, user_id))
        return self.statuses.get((chat_ref, user_id), "member")

    async def get_chat_admins(self, chat_id):
        self._maybe_fail("get_chat_admins")
        return list(self.admins.get(chat_id, []))

    async def delete_message(self, chat_id, message_id):
        self._maybe_fail("delete_message")
        if message_id in self.fail_message_ids:
            raise PlatformRejected("Bad Request: message to delete not found", "delete_message")
        self.calls.append(("delete_message", chat_id, message_id))

    async def send_message(self, chat_id, text, reply_markup=None, reply_to_message_id=None):
        self._maybe_fail("send_message")
        self.sent.append((chat_id, text, reply_markup))
        self._next_message_id += 1
        return self._next_message_id

    def names(self):
        return [call[0] for call in self.calls]

    def count(self, operation):
        return self.names().count(operation)

    def make_admin(self, chat_id, user_id, creator=False):
        status = "creator" if creator else "administrator"
        self.statuses[(chat_id, user_id)] = status
        self.admins.setdefault(chat_id, []).append(ChatAdmin(user_id=user_id, name=f"user{user_id}", status=status))


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def store(redis_client):
    store = ModerationStore(redis_client)
    store.upsert_chat(ChatConfig(chat_id=CHAT_ID, title="Empire"))
    store.set_owner_if_absent(CHAT_ID, OWNER_ID)
    return store


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def resolver(store, platform):
    return RoleResolver(store, platform)


@pytest.fixture
def engine(store, platform, resolver, locks):
    return ModerationEngine(store, platform, resolver, locks)


@pytest.fixture
def gate(store, platform, locks):
    return AdmissionGate(store, platform, locks, timeout_sec=0.05)


@pytest.fixture
def controller(store, platform, resolver, engine, gate, locks):
    return ModerationController(store, platform, resolver=resolver, engine=engine, gate=gate, locks=locks)
